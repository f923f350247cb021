"""Persistent counterexample store.

Remembers the witness of every property that failed in an earlier run so
that the next run replays it before exploring new random inputs.  The store
is an in-memory mapping backed by a single file (see :mod:`recheck._codec`).

Thread safety: one store is shared by every property evaluated in a test
run, and the host test runner may evaluate properties concurrently.  All
mutations and ``flush`` go through a single lock, so ``put``/``remove`` for
the same identity never interleave and a flush always sees a consistent
mapping.  Writes to disk use a temp file in the target directory followed by
``os.replace``; a crash mid-write leaves the previous file intact.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
import threading
from pathlib import Path

import structlog

from recheck import _codec
from recheck.common import PropertyIdentity, Witness
from recheck.errors import CorruptStoreError

logger = structlog.get_logger(__name__)


def _key(identity: PropertyIdentity | str) -> str:
    return str(identity)


class CounterexampleStore:
    """In-memory cache of counterexamples, flushed to one file on demand.

    Example:
        store = CounterexampleStore.load(".recheck.ctex")
        store.put(identity, Witness((0, -1)))
        store.flush()
    """

    def __init__(self, entries: dict[str, Witness] | None = None, path: str | os.PathLike[str] | None = None):
        self._entries: dict[str, Witness] = dict(entries) if entries else {}
        self._path = Path(path) if path is not None else None
        self._dirty = False
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> CounterexampleStore:
        """Read the counterexample file at *path*.

        An absent file yields an empty store.  A corrupt file also yields an
        empty store, and a warning is logged; the corrupt file is replaced by
        the next flush that has something to write.
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return cls(path=path)
        try:
            entries = _codec.decode(data)
        except CorruptStoreError as e:
            logger.warning("Counterexample file is corrupt, ignoring its entries", path=str(path), error=str(e))
            return cls(path=path)
        logger.debug("Loaded counterexamples", path=str(path), count=len(entries))
        return cls(entries, path=path)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def dirty(self) -> bool:
        return self._dirty

    def lookup(self, identity: PropertyIdentity | str) -> Witness | None:
        return self._entries.get(_key(identity))

    def has_others(self, identity: PropertyIdentity | str) -> bool:
        """True if witnesses are stored, but none for *identity*."""
        with self._lock:
            return bool(self._entries) and _key(identity) not in self._entries

    def put(self, identity: PropertyIdentity | str, witness: Witness) -> None:
        """Insert or replace the witness for *identity*.

        Raises:
            UnencodableWitnessError: If the witness value cannot be written to
                the counterexample file.  The store is left unchanged.
        """
        _codec.check_encodable(witness.value)
        with self._lock:
            self._entries[_key(identity)] = witness
            self._dirty = True

    def remove(self, identity: PropertyIdentity | str) -> bool:
        """Delete the witness for *identity*.  Returns True if one was removed."""
        with self._lock:
            if self._entries.pop(_key(identity), None) is None:
                return False
            self._dirty = True
            return True

    def flush(self, path: str | os.PathLike[str] | None = None) -> bool:
        """Persist the mapping if it changed since the last flush.

        Returns:
            True if the file was written.

        Raises:
            OSError: If the file cannot be written.  The store stays dirty so
                a later flush can retry.
            UnencodableWitnessError: If an entry cannot be pickled.
        """
        with self._lock:
            return self._flush_locked(path)

    def clean(self, path: str | os.PathLike[str] | None = None) -> None:
        """Forget every counterexample and persist the empty state."""
        with self._lock:
            self._entries.clear()
            self._dirty = True
            self._flush_locked(path)

    def items(self) -> list[tuple[str, Witness]]:
        """Snapshot of the stored entries, in insertion order."""
        with self._lock:
            return list(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, (str, PropertyIdentity)):
            return False
        return _key(identity) in self._entries

    def __repr__(self) -> str:
        return f"CounterexampleStore(path={str(self._path)!r}, entries={len(self._entries)}, dirty={self._dirty})"

    def _flush_locked(self, path: str | os.PathLike[str] | None) -> bool:
        if not self._dirty:
            return False
        target = Path(path) if path is not None else self._path
        if target is None:
            raise ValueError("No path given and the store was not loaded from a file")
        _atomic_write(target, _codec.encode(self._entries))
        self._dirty = False
        logger.debug("Flushed counterexamples", path=str(target), count=len(self._entries))
        return True


def _atomic_write(target: Path, data: bytes) -> None:
    """Write *data* to *target* through a temp file and ``os.replace``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
