"""Binary format of the counterexample file.

Layout::

    b"RECHECK\\x01" + pickle([(key, value, shape), ...])

Entries are kept in insertion order and pickled with a fixed protocol, so
re-encoding a decoded file reproduces it byte for byte.  Witness values are
arbitrary Python objects produced by hypothesis strategies, which is why the
payload is a pickle rather than a text format.  The file is only ever read
from the project's own working tree.
"""

from __future__ import annotations

import pickle
from collections.abc import Mapping

from recheck.common import Witness
from recheck.errors import CorruptStoreError, UnencodableWitnessError

MAGIC = b"RECHECK\x01"

_PICKLE_PROTOCOL = 4


def encode(entries: Mapping[str, Witness]) -> bytes:
    """Serialize a mapping of property identity to witness.

    Raises:
        UnencodableWitnessError: If a witness value cannot be pickled.
    """
    records = [(key, witness.value, witness.shape) for key, witness in entries.items()]
    return MAGIC + _dumps(records)


def check_encodable(value: object) -> None:
    """Raise :class:`UnencodableWitnessError` unless *value* can be stored."""
    _dumps(value)


def _dumps(obj: object) -> bytes:
    try:
        return pickle.dumps(obj, protocol=_PICKLE_PROTOCOL)
    except (pickle.PicklingError, AttributeError, TypeError, RecursionError) as e:
        # Lambdas, local classes, objects of modules missing from sys.modules
        raise UnencodableWitnessError(f"cannot pickle counterexample: {e}") from e


def decode(data: bytes) -> dict[str, Witness]:
    """Deserialize bytes produced by :func:`encode`.

    Raises:
        CorruptStoreError: If *data* is not a well-formed counterexample file.
    """
    if not data.startswith(MAGIC):
        raise CorruptStoreError("missing counterexample file header")
    try:
        records = pickle.loads(data[len(MAGIC) :])
    except Exception as e:
        # Truncated payloads, unknown classes, garbage opcodes...
        raise CorruptStoreError(f"cannot unpickle counterexamples: {e!r}") from e

    if not isinstance(records, list):
        raise CorruptStoreError(f"expected a list of entries, got {type(records).__name__}")

    entries: dict[str, Witness] = {}
    for record in records:
        if not isinstance(record, tuple) or len(record) != 3:
            raise CorruptStoreError(f"malformed entry {record!r}")
        key, value, shape = record
        if not isinstance(key, str):
            raise CorruptStoreError(f"property identity must be a string, got {key!r}")
        if shape is not None and not isinstance(shape, str):
            raise CorruptStoreError(f"malformed shape for {key}: {shape!r}")
        if key in entries:
            raise CorruptStoreError(f"duplicate entry for {key}")
        entries[key] = Witness(value, shape)
    return entries
