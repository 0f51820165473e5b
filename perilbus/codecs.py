"""Payload codecs.

A codec turns a typed application value into transport bytes and back. The
schema is always named explicitly by the caller, so decoding never guesses the
type of a payload.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

import msgspec
from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from perilbus.exceptions import DecodeError, EncodeError

T = TypeVar("T")

JSON_CONTENT_TYPE = "application/json"
MSGPACK_CONTENT_TYPE = "application/msgpack"


class Codec(ABC, Generic[T]):
    content_type: str

    def __init__(self, schema: Any) -> None:
        self.schema = schema
        self.adapter: TypeAdapter[T] = TypeAdapter(schema)

    @abstractmethod
    def encode(self, value: T) -> bytes: ...

    @abstractmethod
    def decode(self, payload: bytes) -> T: ...

    @property
    def schema_name(self) -> str:
        return getattr(self.schema, "__name__", repr(self.schema))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.schema_name})"


class JsonCodec(Codec[T]):
    """Schema-less structured text, readable across versions."""

    content_type = JSON_CONTENT_TYPE

    def encode(self, value: T) -> bytes:
        try:
            return self.adapter.dump_json(value, by_alias=True)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise EncodeError(f"Could not encode {type(value).__name__} as JSON: {e}") from e

    def decode(self, payload: bytes) -> T:
        try:
            return self.adapter.validate_json(payload)
        except ValidationError as e:
            raise DecodeError(f"Could not decode JSON payload as {self.schema_name}: {e}") from e


def _msgpack_hook(value: Any) -> Any:
    # Called only for values msgspec has no native encoding for.
    raise NotImplementedError(f"Objects of type {type(value).__name__} are not supported")


class MsgpackCodec(Codec[T]):
    """Compact self-describing binary encoding that keeps timestamps typed."""

    content_type = MSGPACK_CONTENT_TYPE

    def __init__(self, schema: Any) -> None:
        super().__init__(schema)
        self.encoder = msgspec.msgpack.Encoder(enc_hook=_msgpack_hook)
        self.decoder = msgspec.msgpack.Decoder()

    def encode(self, value: T) -> bytes:
        try:
            primitives = self.adapter.dump_python(value, mode="python", by_alias=True)
            return self.encoder.encode(primitives)
        except (
            PydanticSerializationError,
            msgspec.EncodeError,
            NotImplementedError,
            TypeError,
            ValueError,
        ) as e:
            raise EncodeError(f"Could not encode {type(value).__name__} as msgpack: {e}") from e

    def decode(self, payload: bytes) -> T:
        try:
            primitives = self.decoder.decode(payload)
            return self.adapter.validate_python(primitives)
        except (msgspec.DecodeError, ValidationError) as e:
            raise DecodeError(
                f"Could not decode msgpack payload as {self.schema_name}: {e}"
            ) from e


_CODECS: dict[str, type[Codec[Any]]] = {
    JSON_CONTENT_TYPE: JsonCodec,
    MSGPACK_CONTENT_TYPE: MsgpackCodec,
}


def codec_for(content_type: str | None, schema: Any) -> Codec[Any]:
    """Resolves the codec registered for a content-type tag."""
    codec_class = _CODECS.get(content_type or "")
    if codec_class is None:
        raise DecodeError(f"There is no codec for the content type {content_type!r}")
    return codec_class(schema)
