"""Tests for run configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from recheck.config import DEFAULT_NUMTESTS, RunConfig, global_verbose


class TestGlobalVerbose:
    @pytest.mark.parametrize(("value", "expected"), [("1", True), ("0", False), ("yes", None), (None, None)])
    def test_values(self, value: str | None, expected: bool | None) -> None:
        environ = {} if value is None else {"RECHECK_VERBOSE": value}
        assert global_verbose(environ) is expected


class TestFromEnv:
    def test_defaults(self) -> None:
        config = RunConfig.from_env({})
        assert config.counterexamples_path == Path(".recheck.ctex")
        assert config.numtests == DEFAULT_NUMTESTS
        assert config.verbose is None
        assert config.store_counterexamples

    def test_environment(self) -> None:
        config = RunConfig.from_env(
            {"RECHECK_COUNTEREXAMPLES": "/tmp/x.ctex", "RECHECK_NUMTESTS": "25", "RECHECK_VERBOSE": "1"}
        )
        assert config.counterexamples_path == Path("/tmp/x.ctex")
        assert config.numtests == 25
        assert config.verbose is True

    def test_overrides_win_and_none_is_ignored(self) -> None:
        config = RunConfig.from_env(
            {"RECHECK_NUMTESTS": "25"}, numtests=None, counterexamples_path="other.ctex", seed=3
        )
        assert config.numtests == 25
        assert config.counterexamples_path == Path("other.ctex")
        assert config.seed == 3

    @pytest.mark.parametrize("raw", ["zero", "0", "-5"])
    def test_invalid_numtests(self, raw: str) -> None:
        with pytest.raises(ValueError, match="RECHECK_NUMTESTS"):
            RunConfig.from_env({"RECHECK_NUMTESTS": raw})

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RECHECK_NUMTESTS", "7")
        assert RunConfig.from_env().numtests == 7


class TestIsVerbose:
    def test_local_flag_when_unset(self) -> None:
        config = RunConfig()
        assert config.is_verbose(True)
        assert not config.is_verbose(False)
        assert not config.is_verbose()

    def test_global_setting_wins(self) -> None:
        assert not RunConfig(verbose=False).is_verbose(True)
        assert RunConfig(verbose=True).is_verbose(False)
