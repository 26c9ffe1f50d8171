"""JSON codec - Encodes request bodies and decodes response bodies.

Encoding goes through pydantic so that models, dataclasses and plain
containers all serialize the same way. Datetime values follow the
configured DateStrategy. Decoding validates the raw bytes against the
declared body type with a TypeAdapter.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, PydanticSchemaGenerationError, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from cosy_network.models import DateStrategy


class CodecError(Exception):
    """Base class for codec errors."""


class EncodingError(CodecError):
    """Raised when a request body cannot be serialized to JSON."""


class DecodingError(CodecError):
    """Raised when a response body does not match the declared type."""

    def __init__(self, message: str, target: Any = None) -> None:
        super().__init__(message)
        self.target = target


@lru_cache(maxsize=256)
def _adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(target)


def _type_name(target: Any) -> str:
    return getattr(target, "__name__", None) or repr(target)


class JSONCodec:
    """Encodes and decodes JSON bodies.

    Usage:
        codec = JSONCodec(date_strategy=DateStrategy.SECONDS_SINCE_EPOCH)
        data = codec.encode(NewUser(name="Ann"))
        user = codec.decode(b'{"id": 42, "name": "Ann"}', User)
    """

    def __init__(self, date_strategy: DateStrategy = DateStrategy.ISO8601) -> None:
        self.date_strategy = date_strategy

    def encode(self, value: Any) -> bytes:
        """Serialize value to compact JSON bytes.

        Raises:
            EncodingError: If the value cannot be represented as JSON.
        """
        try:
            if isinstance(value, BaseModel):
                python_value = value.model_dump(mode="python", by_alias=True)
            else:
                python_value = _adapter(type(value)).dump_python(
                    value, mode="python", by_alias=True
                )
            text = json.dumps(
                python_value,
                default=self._default,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
        except (
            TypeError,
            ValueError,
            PydanticSerializationError,
            PydanticSchemaGenerationError,
        ) as e:
            raise EncodingError(f"Cannot encode {type(value).__name__} as JSON: {e}") from e
        return text.encode("utf-8")

    def decode(self, data: bytes, target: Any) -> Any:
        """Parse data and validate it against target.

        Raises:
            DecodingError: If data is not valid JSON or does not fit target.
        """
        try:
            return _adapter(target).validate_json(data)
        except ValidationError as e:
            raise DecodingError(
                f"Cannot decode response body as {_type_name(target)}: {e}", target
            ) from e

    def _default(self, obj: Any) -> Any:
        """json.dumps hook for values the stdlib encoder does not know."""
        if isinstance(obj, datetime):
            return self._encode_datetime(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        return to_jsonable_python(obj)

    def _encode_datetime(self, value: datetime) -> str | int | float:
        if self.date_strategy is DateStrategy.ISO8601:
            return value.isoformat()

        # Epoch strategies read naive datetimes as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        seconds = value.timestamp()
        if self.date_strategy is DateStrategy.MILLISECONDS_SINCE_EPOCH:
            return int(round(seconds * 1000))
        return seconds
