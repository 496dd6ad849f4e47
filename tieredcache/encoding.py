"""
Value encoders for tieredcache.

Both cache tiers store raw bytes; an encoder turns caller values into
bytes on the way in and back into values on the way out.  Pass the same
encoder instance to every tier that must read the other's entries.
"""

import json
import logging
import pickle
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError
from pydantic_core import PydanticSerializationError, to_json

from tieredcache.exceptions import DecodeError, EncodeError

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheEncoder(Protocol):
    """Protocol for value encoders.

    ``decode`` returns the decoded value.  When ``target`` is given it
    names the type the caller expects; a value of another type is a
    ``DecodeError``.
    """

    def encode(self, value: Any) -> bytes:
        """Serialize *value* to bytes."""
        ...

    def decode(self, data: bytes, target: Optional[Any] = None) -> Any:
        """Deserialize *data*, optionally checked against *target*."""
        ...


class PickleEncoder:
    """General-purpose binary encoder built on :mod:`pickle`.

    Handles arbitrary picklable Python objects.  Only decode bytes that
    this process (or a trusted peer) wrote: unpickling runs code.

    Args:
        protocol: Pickle protocol to write with.
    """

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self._protocol = protocol

    def encode(self, value: Any) -> bytes:
        """Pickle *value*.

        Raises:
            EncodeError: If *value* is ``None`` or cannot be pickled.
        """
        if value is None:
            raise EncodeError("cannot encode None: a missing value is not cacheable")
        try:
            return pickle.dumps(value, protocol=self._protocol)
        except (pickle.PicklingError, TypeError, AttributeError, RecursionError) as exc:
            raise EncodeError(f"value of type {type(value).__name__} is not picklable: {exc}") from exc

    def decode(self, data: bytes, target: Optional[Any] = None) -> Any:
        """Unpickle *data*.

        Raises:
            DecodeError: If *data* is malformed or the value is not an
                instance of *target*.
        """
        try:
            value = pickle.loads(data)
        except (
            pickle.UnpicklingError,
            EOFError,
            ValueError,
            TypeError,
            AttributeError,
            ImportError,
            IndexError,
        ) as exc:
            raise DecodeError(f"malformed cached bytes: {exc}") from exc

        if isinstance(target, type) and not isinstance(value, target):
            raise DecodeError(
                f"cached value is {type(value).__name__}, expected {target.__name__}"
            )
        return value


class JsonEncoder:
    """JSON encoder backed by pydantic.

    Encodes pydantic models and anything ``pydantic_core.to_json`` can
    serialize.  Decoding with a ``target`` validates the payload against
    that type, so model classes are rebuilt from the cache.
    """

    def encode(self, value: Any) -> bytes:
        """Serialize *value* to JSON bytes.

        Raises:
            EncodeError: If *value* is ``None`` or not JSON-serializable.
        """
        if value is None:
            raise EncodeError("cannot encode None: a missing value is not cacheable")
        try:
            if isinstance(value, BaseModel):
                return value.model_dump_json().encode("utf-8")
            return to_json(value)
        except PydanticSerializationError as exc:
            raise EncodeError(f"value of type {type(value).__name__} is not JSON-serializable: {exc}") from exc

    def decode(self, data: bytes, target: Optional[Any] = None) -> Any:
        """Parse JSON *data*, validating against *target* when given.

        Raises:
            DecodeError: On malformed JSON, a payload that does not fit
                *target*, or a *target* pydantic cannot validate against.
        """
        if target is None:
            try:
                return json.loads(data)
            except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
                raise DecodeError(f"malformed cached JSON: {exc}") from exc
        try:
            adapter = TypeAdapter(target)
        except PydanticSchemaGenerationError as exc:
            raise DecodeError(f"cannot decode into {target!r}: {exc}") from exc
        try:
            return adapter.validate_json(data)
        except ValidationError as exc:
            raise DecodeError(f"cached JSON does not match {target!r}: {exc}") from exc
