"""recheck CLI: inspect or forget stored counterexamples.

Usage::

    recheck inspect [PATH]
    recheck clean [PATH]

``PATH`` defaults to ``$RECHECK_COUNTEREXAMPLES`` or ``.recheck.ctex`` in the
current directory.
"""

from __future__ import annotations

import sys
from pathlib import Path

from recheck import _codec
from recheck.common import PropertyIdentity
from recheck.config import RECHECK_COUNTEREXAMPLES_ENV, RunConfig
from recheck.errors import CorruptStoreError
from recheck.store import CounterexampleStore


def _usage() -> None:
    print("Usage: recheck {inspect,clean} [PATH]", file=sys.stderr)
    print()
    print("Manage the counterexamples stored by recheck properties.")
    print()
    print("Commands:")
    print("  inspect   Print every stored counterexample")
    print("  clean     Forget all stored counterexamples")
    print()
    print("Environment variables:")
    print(f"  {RECHECK_COUNTEREXAMPLES_ENV}  Counterexample file (default .recheck.ctex)")


def inspect_counterexamples(path: Path) -> int:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        print(f"recheck: no counterexamples stored in {path}")
        return 0
    except OSError as e:
        print(f"recheck: could not open counterexamples file {path}: {e}", file=sys.stderr)
        return 1
    try:
        entries = _codec.decode(data)
    except CorruptStoreError as e:
        print(f"recheck: could not read counterexamples file {path}: {e}", file=sys.stderr)
        return 1

    for counter, (key, witness) in enumerate(entries.items(), start=1):
        print(f"#{counter}: Property {PropertyIdentity.parse(key)}: {witness.value!r}")
    return 0


def clean_counterexamples(path: Path) -> int:
    try:
        CounterexampleStore().clean(path)
    except OSError as e:
        print(f"recheck: could not clean counterexamples file {path}: {e}", file=sys.stderr)
        return 1
    print(f"recheck: removed all counterexamples from {path}", file=sys.stderr)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``recheck`` CLI command."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] not in ("inspect", "clean") or len(argv) > 2:
        _usage()
        return 1

    command, *rest = argv
    try:
        path = Path(rest[0]) if rest else RunConfig.from_env().counterexamples_path
    except ValueError as e:
        print(f"recheck: {e}", file=sys.stderr)
        return 1

    if command == "inspect":
        return inspect_counterexamples(path)
    return clean_counterexamples(path)


if __name__ == "__main__":
    sys.exit(main())
