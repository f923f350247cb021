"""Tests for report formatting.

The pass line and the failure headers are matched by external scripts, so
these tests pin their exact text.
"""

from __future__ import annotations

import re
from collections import Counter

from recheck.common import FailureReport, Location, PropertyIdentity
from recheck.reporting import (
    format_categories,
    format_counterexample,
    format_failure,
    format_passed,
    format_summary,
)
from recheck.results import RunStatus

LOCATION = Location("bank.py", 12, "withdraw")


class TestPassed:
    def test_pass_line(self) -> None:
        assert format_passed(100) == "OK: Passed 100 test(s)."
        assert re.search(r"Passed \d+ test\(s\)", format_passed(1))

    def test_categories(self) -> None:
        text = format_passed(4, Counter({"empty": 1, "non-empty": 3}))
        assert text.splitlines() == ["OK: Passed 4 test(s).", "75% non-empty", "25% empty"]

    def test_non_string_categories(self) -> None:
        assert format_categories(Counter({(1, 2): 1})) == ["100% (1, 2)"]
        assert format_categories(Counter()) == []


class TestFailure:
    def test_raised(self) -> None:
        report = FailureReport("raised", "ValueError", "negative balance", (LOCATION,))
        assert format_failure(report).splitlines() == [
            "An exception was raised:",
            "    ValueError: negative balance",
            "Stacktrace:",
            '    File "bank.py", line 12, in withdraw',
        ]

    def test_raised_without_message(self) -> None:
        report = FailureReport("raised", "AssertionError")
        assert format_failure(report).splitlines() == ["An exception was raised:", "    AssertionError"]

    def test_linked_exception(self) -> None:
        report = FailureReport("linked", "KeyError", "'acct'", (LOCATION,), worker="teller")
        lines = format_failure(report).splitlines()
        assert lines[0] == "A linked process died with reason: an exception was raised:"
        assert lines[1] == "    KeyError: 'acct'"

    def test_linked_exit(self) -> None:
        report = FailureReport("linked", None, worker="teller", exit_code=2)
        assert format_failure(report) == "A linked process died with reason: exit(2)."

    def test_falsified(self) -> None:
        assert format_failure(FailureReport.falsified()) == "The property returned a false value."

    def test_counterexample(self) -> None:
        text = format_counterexample(PropertyIdentity("MyMod", "positive_sum"), (0, -1), FailureReport.falsified())
        assert text.splitlines()[:2] == ["Property MyMod.positive_sum failed. Counter-Example is:", "    (0, -1)"]


class TestSummary:
    def test_summary_contents(self) -> None:
        report = FailureReport("raised", "ValueError", "negative balance", (LOCATION,))
        status = RunStatus(
            tests=("MyMod.positive_sum", "MyMod.withdraw", "MyMod.deposit"),
            errors=(("MyMod.withdraw", report),),
            current="MyMod.deposit",
        )
        text = format_summary(status, Counter({"small": 2, "large": 2}))
        lines = text.splitlines()
        assert lines[0] == "recheck: 3 properties, 1 failed, 66.7% passed"
        assert lines[1] == "Categories: large, small"
        assert "MyMod.withdraw:" in lines
        assert "    ValueError: negative balance" in text
        assert 'File "bank.py", line 12, in withdraw' in text

    def test_summary_with_plain_error(self) -> None:
        status = RunStatus(tests=("MyMod.p",), errors=(("MyMod.p", "engine gave up"),))
        text = format_summary(status)
        assert text.splitlines()[0] == "recheck: 1 property, 1 failed, 0.0% passed"
        assert text.endswith("MyMod.p:\n  engine gave up")

    def test_empty_run(self) -> None:
        assert format_summary(RunStatus()) == "recheck: 0 properties, 0 failed, 100.0% passed"
