"""Tests for the recheck CLI."""

from __future__ import annotations

from pathlib import Path

import pytest

from recheck import _codec
from recheck.cli import main
from recheck.common import Witness


@pytest.fixture
def populated(ctex_path: Path) -> Path:
    ctex_path.write_bytes(
        _codec.encode(
            {
                "MyMod.positive_sum": Witness((0, -1)),
                "tests.test_bank.withdraw": Witness([1, 2], "lists(integers())"),
            }
        )
    )
    return ctex_path


class TestInspect:
    def test_lists_counterexamples(self, populated: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["inspect", str(populated)]) == 0
        assert capsys.readouterr().out.splitlines() == [
            "#1: Property MyMod.positive_sum: (0, -1)",
            "#2: Property tests.test_bank.withdraw: [1, 2]",
        ]

    def test_missing_file(self, ctex_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["inspect", str(ctex_path)]) == 0
        assert "no counterexamples stored" in capsys.readouterr().out

    def test_corrupt_file(self, ctex_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        ctex_path.write_bytes(b"garbage")
        assert main(["inspect", str(ctex_path)]) == 1
        assert "could not read counterexamples file" in capsys.readouterr().err

    def test_path_from_environment(
        self, populated: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("RECHECK_COUNTEREXAMPLES", str(populated))
        assert main(["inspect"]) == 0
        assert "#1: Property MyMod.positive_sum" in capsys.readouterr().out


class TestClean:
    def test_clean(self, populated: Path) -> None:
        assert main(["clean", str(populated)]) == 0
        assert _codec.decode(populated.read_bytes()) == {}

    def test_clean_missing_file(self, ctex_path: Path) -> None:
        assert main(["clean", str(ctex_path)]) == 0
        assert _codec.decode(ctex_path.read_bytes()) == {}


class TestUsage:
    @pytest.mark.parametrize("argv", [[], ["explode"], ["inspect", "a", "b"]])
    def test_usage(self, argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
        assert main(argv) == 1
        assert "Usage: recheck" in capsys.readouterr().err
