"""Tests for the value encoders."""

import threading
from typing import Dict, List

import pytest
from pydantic import BaseModel

from tieredcache.encoding import CacheEncoder, JsonEncoder, PickleEncoder
from tieredcache.exceptions import DecodeError, EncodeError


class Profile(BaseModel):
    name: str
    age: int


class TestPickleEncoder:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(PickleEncoder(), CacheEncoder)

    def test_round_trips_structured_value(self) -> None:
        enc = PickleEncoder()
        value = {"a": [1, 2, 3], "b": ("x", 2.5)}
        assert enc.decode(enc.encode(value)) == value

    def test_round_trips_model(self) -> None:
        enc = PickleEncoder()
        restored = enc.decode(enc.encode(Profile(name="ada", age=36)), Profile)
        assert restored == Profile(name="ada", age=36)

    def test_none_rejected(self) -> None:
        with pytest.raises(EncodeError):
            PickleEncoder().encode(None)

    def test_unpicklable_rejected(self) -> None:
        with pytest.raises(EncodeError):
            PickleEncoder().encode(threading.Lock())

    def test_garbage_bytes_rejected(self) -> None:
        with pytest.raises(DecodeError):
            PickleEncoder().decode(b"not a pickle")

    def test_target_mismatch_rejected(self) -> None:
        enc = PickleEncoder()
        with pytest.raises(DecodeError, match="expected int"):
            enc.decode(enc.encode("text"), int)

    def test_errors_are_value_errors(self) -> None:
        with pytest.raises(ValueError):
            PickleEncoder().decode(b"")


class TestJsonEncoder:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(JsonEncoder(), CacheEncoder)

    def test_plain_values(self) -> None:
        enc = JsonEncoder()
        data = enc.encode({"k": [1, 2]})
        assert data == b'{"k":[1,2]}'
        assert enc.decode(data) == {"k": [1, 2]}

    def test_model_rebuilt_with_target(self) -> None:
        enc = JsonEncoder()
        restored = enc.decode(enc.encode(Profile(name="lin", age=7)), Profile)
        assert isinstance(restored, Profile)
        assert restored.age == 7

    def test_generic_target(self) -> None:
        enc = JsonEncoder()
        assert enc.decode(b'{"a":["1","2"]}', Dict[str, List[int]]) == {"a": [1, 2]}

    def test_none_rejected(self) -> None:
        with pytest.raises(EncodeError):
            JsonEncoder().encode(None)

    def test_unserializable_rejected(self) -> None:
        with pytest.raises(EncodeError):
            JsonEncoder().encode(object())

    def test_malformed_json_rejected(self) -> None:
        with pytest.raises(DecodeError):
            JsonEncoder().decode(b"{nope")

    def test_payload_not_matching_target_rejected(self) -> None:
        with pytest.raises(DecodeError):
            JsonEncoder().decode(b'{"name": "x"}', Profile)

    def test_unsupported_target_rejected(self) -> None:
        class Opaque:
            pass

        with pytest.raises(DecodeError, match="cannot decode into"):
            JsonEncoder().decode(b"{}", Opaque)
