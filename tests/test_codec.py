"""Tests for JSONCodec encoding, decoding and date strategies."""

import json
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import pytest
from pydantic import BaseModel, Field

from cosy_network.codec import DecodingError, EncodingError, JSONCodec
from cosy_network.models import DateStrategy


class User(BaseModel):
    id: int
    name: str


class Event(BaseModel):
    name: str
    at: datetime


class Aliased(BaseModel):
    error_code: str = Field(alias="errorCode")


@dataclass
class Point:
    x: int
    y: int


MOMENT = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
MOMENT_EPOCH = 1704164645


class TestEncode:
    def test_model_encoded_compactly(self) -> None:
        assert JSONCodec().encode(User(id=42, name="Ann")) == b'{"id":42,"name":"Ann"}'

    def test_model_encoded_by_alias(self) -> None:
        data = JSONCodec().encode(Aliased(errorCode="E1"))
        assert json.loads(data) == {"errorCode": "E1"}

    def test_dataclass_encoded(self) -> None:
        assert JSONCodec().encode(Point(x=1, y=2)) == b'{"x":1,"y":2}'

    def test_plain_containers_encoded(self) -> None:
        assert JSONCodec().encode({"ids": [1, 2], "ok": True}) == b'{"ids":[1,2],"ok":true}'

    def test_non_ascii_kept_as_utf8(self) -> None:
        assert JSONCodec().encode({"name": "Zoë"}) == '{"name":"Zoë"}'.encode("utf-8")

    def test_uuid_encoded_as_string(self) -> None:
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert json.loads(JSONCodec().encode({"id": value})) == {"id": str(value)}

    def test_unserializable_value_raises(self) -> None:
        with pytest.raises(EncodingError) as exc_info:
            JSONCodec().encode({"handle": object()})
        assert exc_info.value.__cause__ is not None

    def test_list_of_models_encoded_by_alias(self) -> None:
        data = JSONCodec().encode([Aliased(errorCode="E1"), Aliased(errorCode="E2")])
        assert data == b'[{"errorCode":"E1"},{"errorCode":"E2"}]'

    def test_model_nested_in_dict_encoded_by_alias(self) -> None:
        data = JSONCodec().encode({"errors": [Aliased(errorCode="E1")]})
        assert json.loads(data) == {"errors": [{"errorCode": "E1"}]}

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_float_raises(self, value: float) -> None:
        """JSON has no NaN or Infinity literal."""
        with pytest.raises(EncodingError):
            JSONCodec().encode({"ratio": value})

    def test_non_finite_float_in_model_raises(self) -> None:
        class Measurement(BaseModel):
            ratio: float

        with pytest.raises(EncodingError):
            JSONCodec().encode(Measurement(ratio=float("nan")))


class TestDateStrategy:
    def test_iso8601_is_default(self) -> None:
        codec = JSONCodec()
        assert codec.date_strategy is DateStrategy.ISO8601
        assert codec.encode({"at": MOMENT}) == b'{"at":"2024-01-02T03:04:05+00:00"}'

    def test_seconds_since_epoch(self) -> None:
        codec = JSONCodec(date_strategy=DateStrategy.SECONDS_SINCE_EPOCH)
        assert json.loads(codec.encode({"at": MOMENT})) == {"at": MOMENT_EPOCH}

    def test_milliseconds_since_epoch(self) -> None:
        codec = JSONCodec(date_strategy=DateStrategy.MILLISECONDS_SINCE_EPOCH)
        assert codec.encode({"at": MOMENT}) == f'{{"at":{MOMENT_EPOCH * 1000}}}'.encode()

    def test_naive_datetime_read_as_utc(self) -> None:
        codec = JSONCodec(date_strategy=DateStrategy.SECONDS_SINCE_EPOCH)
        assert json.loads(codec.encode({"at": datetime(1970, 1, 1, 0, 0, 10)})) == {"at": 10}

    def test_strategy_applies_inside_models(self) -> None:
        codec = JSONCodec(date_strategy=DateStrategy.MILLISECONDS_SINCE_EPOCH)
        data = codec.encode(Event(name="launch", at=MOMENT))
        assert json.loads(data) == {"name": "launch", "at": MOMENT_EPOCH * 1000}

    def test_plain_date_always_iso(self) -> None:
        codec = JSONCodec(date_strategy=DateStrategy.SECONDS_SINCE_EPOCH)
        assert codec.encode({"day": date(2024, 1, 2)}) == b'{"day":"2024-01-02"}'


class TestDecode:
    def test_decode_into_model(self) -> None:
        user = JSONCodec().decode(b'{"id": 42, "name": "Ann"}', User)
        assert user == User(id=42, name="Ann")

    def test_decode_list_of_models(self) -> None:
        users = JSONCodec().decode(b'[{"id": 1, "name": "A"}]', list[User])
        assert users == [User(id=1, name="A")]

    def test_decode_any_returns_plain_json(self) -> None:
        assert JSONCodec().decode(b'{"a": [1, null]}', Any) == {"a": [1, None]}

    def test_decode_accepts_iso_and_epoch_dates(self) -> None:
        codec = JSONCodec()
        iso = codec.decode(b'{"name": "x", "at": "2024-01-02T03:04:05Z"}', Event)
        epoch = codec.decode(f'{{"name": "x", "at": {MOMENT_EPOCH}}}'.encode(), Event)
        assert iso.at == MOMENT
        assert epoch.at == MOMENT

    def test_shape_mismatch_raises(self) -> None:
        with pytest.raises(DecodingError) as exc_info:
            JSONCodec().decode(b'{"id": "not a number"}', User)
        assert exc_info.value.target is User
        assert "User" in str(exc_info.value)

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(DecodingError):
            JSONCodec().decode(b"<html>oops</html>", Any)

    def test_empty_body_raises(self) -> None:
        with pytest.raises(DecodingError):
            JSONCodec().decode(b"", User)


class TestRoundTrip:
    @pytest.mark.parametrize(
        "strategy",
        [DateStrategy.ISO8601, DateStrategy.SECONDS_SINCE_EPOCH, DateStrategy.MILLISECONDS_SINCE_EPOCH],
    )
    def test_model_with_datetime(self, strategy: DateStrategy) -> None:
        codec = JSONCodec(date_strategy=strategy)
        event = Event(name="launch", at=MOMENT)
        assert codec.decode(codec.encode(event), Event) == event
