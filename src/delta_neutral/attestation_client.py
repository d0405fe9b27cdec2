"""
Attestation Task Client
=======================
HTTP client for an attestation operator's task endpoint.

Submits a PlanPayload to ``POST /task/execute`` and maps the operator's
JSON verdict onto an AttestationResult. Transport failures are retried
and then raised; they are NOT rejections, so the engine does not
blacklist the plan.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from src.delta_neutral.collaborators import AttestationResult
from src.delta_neutral.schemas import PlanPayload
from src.shared.system.logging import Logger


@dataclass
class AttestationClientConfig:
    """Attestation endpoint configuration."""

    host: str = "127.0.0.1"
    port: int = 4003
    request_timeout: float = 10.0
    max_retries: int = 3
    task_definition_id: str = "0"

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/task/execute"

    @classmethod
    def from_settings(cls, settings=None) -> "AttestationClientConfig":
        if settings is None:
            from config.settings import Settings as settings
        return cls(
            host=settings.ATTESTATION_HOST,
            port=settings.ATTESTATION_PORT,
            task_definition_id=settings.ATTESTATION_TASK_DEFINITION_ID,
        )


class TaskAttestationClient:
    """
    AttestationService backed by an operator HTTP endpoint.

    Usage:
        attestor = TaskAttestationClient(AttestationClientConfig.from_settings())
        verdict = await attestor.attest(payload)
    """

    def __init__(
        self,
        config: Optional[AttestationClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AttestationClientConfig()
        self._transport = transport

        # Stats
        self._submitted = 0
        self._accepted = 0
        self._rejected = 0

    async def attest(self, payload: PlanPayload) -> AttestationResult:
        body = {
            "taskDefinitionId": self.config.task_definition_id,
            "plan": payload.model_dump(mode="json"),
            "strategy": payload.to_strategy_document(),
        }

        for attempt in range(self.config.max_retries):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    response = await client.post(
                        self.config.url, json=body, timeout=self.config.request_timeout
                    )
                break
            except httpx.TransportError as e:
                if attempt == self.config.max_retries - 1:
                    Logger.error(f"[ATTEST] {self.config.url} unreachable: {e!r}")
                    raise
                await asyncio.sleep(0.5 * (attempt + 1))

        self._submitted += 1
        response.raise_for_status()
        data = response.json()

        result = AttestationResult(
            accepted=bool(data.get("accepted", False)),
            proof=data.get("proof"),
            reason=str(data.get("reason", "")),
        )
        if result.accepted:
            self._accepted += 1
            Logger.success(f"[ATTEST] Plan {payload.plan_id} accepted")
        else:
            self._rejected += 1
            Logger.warning(f"[ATTEST] Plan {payload.plan_id} rejected: {result.reason}")
        return result

    def get_stats(self) -> dict:
        return {
            "submitted": self._submitted,
            "accepted": self._accepted,
            "rejected": self._rejected,
        }
