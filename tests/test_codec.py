"""Tests for the counterexample file format."""

from __future__ import annotations

import pickle

import pytest
from hypothesis import given
from hypothesis import strategies as st

from recheck import _codec
from recheck.common import Witness
from recheck.errors import CorruptStoreError, RecheckError, UnencodableWitnessError

witness_values = st.one_of(
    st.integers(),
    st.text(),
    st.tuples(st.integers(), st.integers()),
    st.lists(st.booleans(), max_size=5),
    st.none(),
)
entries = st.dictionaries(
    st.text(min_size=1, max_size=20),
    st.builds(Witness, witness_values, st.one_of(st.none(), st.text(max_size=10))),
    max_size=8,
)


class TestRoundTrip:
    @given(entries)
    def test_decode_inverts_encode(self, mapping: dict[str, Witness]) -> None:
        decoded = _codec.decode(_codec.encode(mapping))
        assert decoded == mapping
        assert list(decoded) == list(mapping)

    @given(entries)
    def test_reencoding_is_byte_identical(self, mapping: dict[str, Witness]) -> None:
        data = _codec.encode(mapping)
        assert _codec.encode(_codec.decode(data)) == data

    def test_empty_file(self) -> None:
        data = _codec.encode({})
        assert data.startswith(_codec.MAGIC)
        assert _codec.decode(data) == {}


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


class TestCorruptInput:
    def _payload(self, obj: object) -> bytes:
        return _codec.MAGIC + pickle.dumps(obj, protocol=4)

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"not a counterexample file",
            _codec.MAGIC,
            _codec.MAGIC + b"\x80\x04garbage",
        ],
    )
    def test_garbage(self, data: bytes) -> None:
        with pytest.raises(CorruptStoreError):
            _codec.decode(data)

    def test_truncated(self) -> None:
        data = _codec.encode({"MyMod.positive_sum": Witness((0, -1), "shape")})
        with pytest.raises(CorruptStoreError):
            _codec.decode(data[:-3])

    def test_not_a_list(self) -> None:
        with pytest.raises(CorruptStoreError, match="list of entries"):
            _codec.decode(self._payload({"MyMod.p": 1}))

    def test_malformed_entry(self) -> None:
        with pytest.raises(CorruptStoreError, match="malformed entry"):
            _codec.decode(self._payload([("MyMod.p", 1)]))

    def test_non_string_key(self) -> None:
        with pytest.raises(CorruptStoreError, match="must be a string"):
            _codec.decode(self._payload([(42, 1, None)]))

    def test_bad_shape(self) -> None:
        with pytest.raises(CorruptStoreError, match="malformed shape"):
            _codec.decode(self._payload([("MyMod.p", 1, 3.5)]))

    def test_duplicate_keys(self) -> None:
        with pytest.raises(CorruptStoreError, match="duplicate"):
            _codec.decode(self._payload([("MyMod.p", 1, None), ("MyMod.p", 2, None)]))


class TestUnencodable:
    def test_lambda_witness(self) -> None:
        with pytest.raises(UnencodableWitnessError) as excinfo:
            _codec.encode({"MyMod.callback": Witness(lambda: 0)})
        assert isinstance(excinfo.value, RecheckError)

    def test_local_class_instance(self) -> None:
        class Local:
            pass

        with pytest.raises(UnencodableWitnessError):
            _codec.check_encodable(Local())

    def test_plain_values_are_encodable(self) -> None:
        _codec.check_encodable((0, -1))
