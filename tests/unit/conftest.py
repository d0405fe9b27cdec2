"""
Unit Test Configuration
=======================
Fixtures for pure logic tests - NO I/O ALLOWED.

All unit tests should be completely isolated from:
- Network (venue APIs, attestation operators)
- File system (except tmp_path)

HTTP clients may still run against ``httpx.MockTransport``.
"""

import pytest

from src.shared.system.logging import Logger


# ============================================================================
# AUTOUSE: ENFORCE I/O ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def isolate_unit_tests(monkeypatch):
    """
    Automatically disable real network I/O and console output.
    Any test that accidentally opens a socket will fail.
    """
    async def block_network(*args, **kwargs):
        raise RuntimeError(
            "Network I/O detected in unit test! "
            "Inject httpx.MockTransport instead."
        )

    monkeypatch.setattr("httpx.AsyncHTTPTransport.handle_async_request", block_network)
    monkeypatch.setattr("src.shared.system.logging._ensure_file_handler", lambda: None)

    Logger.set_silent(True)
    yield
    Logger.set_silent(False)
