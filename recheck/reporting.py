"""Human-readable reports for property outcomes and whole runs.

The formats here are matched by external scripts, keep them stable:

- ``OK: Passed <N> test(s).`` for a passing property in verbose mode,
  followed by one ``<pct>% <category>`` line per collected category.
- ``An exception was raised:`` for an exception raised by the property
  itself, ``A linked process died with reason: ...`` for a crash of a
  linked worker.  Both are followed by ``    <Type>: <message>`` and a
  ``Stacktrace:`` block when a traceback is available.
"""

from __future__ import annotations

import textwrap
from collections import Counter
from collections.abc import Hashable
from typing import Any

from recheck.common import FailureReport
from recheck.results import Reason, RunStatus


def _category_str(category: Hashable) -> str:
    return category if isinstance(category, str) else repr(category)


def format_categories(categories: Counter[Hashable]) -> list[str]:
    """Distribution lines, most frequent category first."""
    total = sum(categories.values())
    if not total:
        return []
    return [f"{100 * count / total:.0f}% {_category_str(category)}" for category, count in categories.most_common()]


def format_passed(num_tests: int, categories: Counter[Hashable] | None = None) -> str:
    lines = [f"OK: Passed {num_tests} test(s)."]
    if categories:
        lines.extend(format_categories(categories))
    return "\n".join(lines)


def format_failure(report: FailureReport) -> str:
    if report.kind == "falsified":
        lines = ["The property returned a false value."]
    elif report.kind == "linked" and report.error_type is None:
        lines = [f"A linked process died with reason: exit({report.exit_code!r})."]
    else:
        if report.kind == "linked":
            lines = ["A linked process died with reason: an exception was raised:"]
        else:
            lines = ["An exception was raised:"]
        lines.append(f"    {report.error_type}: {report.message}" if report.message else f"    {report.error_type}")

    if report.locations:
        lines.append("Stacktrace:")
        lines.extend(f"    {location}" for location in report.locations)
    return "\n".join(lines)


def format_counterexample(identity: Any, witness: Any, report: FailureReport) -> str:
    return f"Property {identity} failed. Counter-Example is:\n    {witness!r}\n\n{format_failure(report)}"


def format_reason(reason: Reason) -> str:
    if isinstance(reason, FailureReport):
        return format_failure(reason)
    return str(reason)


def format_summary(status: RunStatus, categories: Counter[Hashable] | None = None) -> str:
    """Final run summary: pass percentage, categories and every failure."""
    num_properties = len(set(status.tests))
    num_failed = len({test_id for test_id, _ in status.errors if test_id is not None})
    lines = [
        f"recheck: {num_properties} propert{'y' if num_properties == 1 else 'ies'}, "
        f"{num_failed} failed, {status.pass_percentage:.1f}% passed"
    ]

    if categories:
        distinct = sorted(_category_str(category) for category in categories)
        lines.append(f"Categories: {', '.join(distinct)}")
        lines.extend(f"  {line}" for line in format_categories(categories))

    for test_id, reason in status.errors:
        lines.append("")
        lines.append(f"{test_id if test_id is not None else '<no test running>'}:")
        lines.append(textwrap.indent(format_reason(reason), "  "))
    return "\n".join(lines)
