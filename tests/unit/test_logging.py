"""
Logger Unit Tests
=================
Tests for [TAG] parsing and silent mode.
"""

import pytest

from src.shared.system.logging import Logger


@pytest.mark.unit
class TestLogger:

    def test_parses_source_tag(self):
        assert Logger._parse_source("[OPTIMIZER] 3 feasible") == ("OPTIMIZER", "3 feasible")

    def test_untagged_defaults_to_system(self):
        assert Logger._parse_source("hello") == ("SYSTEM", "hello")

    def test_long_bracket_is_not_a_tag(self):
        source, _ = Logger._parse_source("[this is not a source tag] x")
        assert source == "SYSTEM"

    def test_silent_mode_suppresses_console(self, capsys):
        Logger.set_silent(True)
        Logger.warning("[ENGINE] quiet")
        assert "quiet" not in capsys.readouterr().out
