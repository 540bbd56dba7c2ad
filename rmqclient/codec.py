"""Remoting commands and the two header codecs used on the wire.

A frame on the wire looks like this::

    | frame_size (4) | codec + header_length (4) | header | body |

``frame_size`` counts everything after itself.  The top byte of the second
field names the header codec, the low three bytes hold the header length.
"""

from __future__ import annotations

import json
import struct
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping, Optional, Protocol

RPC_TYPE = 0
RPC_ONEWAY = 1
RESPONSE_TYPE = 1
PROTOCOL_VERSION = 317

# code(2) + language(1) + version(2) + opaque(4) + flag(4) + remark len(4) + ext len(4)
HEADER_FIXED_LENGTH = 21

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INT16_MIN = -(2**15)
_INT16_MAX = 2**15 - 1

_TEXT_ERRORS = "surrogateescape"


class CodecError(ValueError):
    """Raised when a command cannot be encoded or decoded."""


class LanguageCode(IntEnum):
    """Language of the peer that produced a command."""

    JAVA = 0
    GO = 9
    UNKNOWN = 127

    def __str__(self) -> str:
        if self is LanguageCode.JAVA:
            return "JAVA"
        if self is LanguageCode.GO:
            return "GO"
        return "unknown"

    @classmethod
    def from_byte(cls, value: int) -> "LanguageCode":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_json(cls, value: Any) -> "LanguageCode":
        return cls.GO if value == "GO" else cls.UNKNOWN


class CodecType(IntEnum):
    """Header serialisation formats."""

    JSON = 0
    ROCKETMQ = 1


class CustomHeader(Protocol):
    def encode(self) -> Mapping[str, str]: ...


class _OpaqueCounter:
    """Thread-safe, wrapping 32-bit request id generator."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._value + 1
            if value > _INT32_MAX:
                value = _INT32_MIN
            self._value = value
            return value


_opaque = _OpaqueCounter()


@dataclass
class RemotingCommand:
    """A request or response exchanged with a broker or name server."""

    code: int = 0
    language: LanguageCode = LanguageCode.GO
    version: int = 0
    opaque: int = 0
    flag: int = 0
    remark: str = ""
    ext_fields: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def is_response_type(self) -> bool:
        return self.flag & RESPONSE_TYPE == RESPONSE_TYPE

    def mark_response_type(self) -> None:
        self.flag |= RESPONSE_TYPE

    def __str__(self) -> str:
        fields = " ".join(f"{k}:{v}" for k, v in sorted(self.ext_fields.items()))
        return (
            f"Code: {self.code}, opaque: {self.opaque}, "
            f"Remark: {self.remark}, ExtFields: map[{fields}]"
        )


def new_command(
    code: int,
    header: Optional[CustomHeader] = None,
    body: Optional[bytes] = None,
) -> RemotingCommand:
    """Build a command with a fresh opaque id and the header's fields."""
    ext_fields = dict(header.encode()) if header is not None else {}
    return RemotingCommand(
        code=code,
        language=LanguageCode.GO,
        version=PROTOCOL_VERSION,
        opaque=_opaque.next(),
        ext_fields=ext_fields,
        body=bytes(body) if body is not None else b"",
    )


def encode(command: RemotingCommand, codec: CodecType = CodecType.JSON) -> bytes:
    """Serialise a command into a full frame, length prefix included."""
    try:
        codec = CodecType(codec)
    except ValueError as exc:
        raise CodecError(f"unknown codec type: {codec}") from exc

    if codec is CodecType.JSON:
        header = encode_json_header(command)
    else:
        header = encode_rocketmq_header(command)

    body = bytes(command.body)
    frame_size = 4 + len(header) + len(body)
    try:
        size_bytes = struct.pack(">i", frame_size)
    except struct.error as exc:
        raise CodecError(f"frame too large: {frame_size} bytes") from exc
    return size_bytes + _mark_protocol_type(codec, len(header)) + header + body


def decode(data: bytes) -> RemotingCommand:
    """Parse a frame whose leading size field has already been removed."""
    data = bytes(data)
    reader = _Reader(data)
    ori_header_len = reader.int32()
    header_length = ori_header_len & 0xFFFFFF
    header_data = reader.take(header_length)

    codec_type = (ori_header_len >> 24) & 0xFF
    if codec_type == CodecType.JSON:
        command = decode_json_header(header_data)
    elif codec_type == CodecType.ROCKETMQ:
        command = decode_rocketmq_header(header_data)
    else:
        raise CodecError(f"unknown codec type: {codec_type}")

    body_length = len(data) - 4 - header_length
    if body_length > 0:
        command.body = reader.take(body_length)
    return command


def _mark_protocol_type(codec: CodecType, length: int) -> bytes:
    return bytes(
        (int(codec), (length >> 16) & 0xFF, (length >> 8) & 0xFF, length & 0xFF)
    )


def _escape_html(text: str) -> str:
    return text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def encode_json_header(command: RemotingCommand) -> bytes:
    """Serialise the header of a command as JSON; the body is left out."""
    document = {
        "code": command.code,
        "language": "GO",
        "version": command.version,
        "opaque": command.opaque,
        "flag": command.flag,
        "remark": command.remark,
        "extFields": dict(sorted(command.ext_fields.items())),
    }
    try:
        text = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise CodecError(f"cannot encode header as JSON: {exc}") from exc
    return _escape_html(text).encode("utf-8", _TEXT_ERRORS)


def _json_int(document: Mapping[str, Any], key: str, low: int, high: int) -> int:
    value = document.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise CodecError(f"field {key!r} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise CodecError(f"field {key!r} out of range: {value}")
    return value


def _json_str(value: Any, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CodecError(f"{what} must be a string, got {value!r}")
    return value


def decode_json_header(data: bytes) -> RemotingCommand:
    """Parse a JSON header into a command with an empty body."""
    try:
        document = json.loads(bytes(data))
    except (ValueError, UnicodeDecodeError) as exc:
        raise CodecError(f"invalid JSON header: {exc}") from exc
    if not isinstance(document, dict):
        raise CodecError("JSON header must be an object")

    raw_fields = document.get("extFields")
    if raw_fields is None:
        raw_fields = {}
    if not isinstance(raw_fields, dict):
        raise CodecError("field 'extFields' must be an object")
    ext_fields = {key: _json_str(value, f"extFields[{key!r}]") for key, value in raw_fields.items()}

    return RemotingCommand(
        code=_json_int(document, "code", _INT16_MIN, _INT16_MAX),
        language=LanguageCode.from_json(document.get("language")),
        version=_json_int(document, "version", _INT16_MIN, _INT16_MAX),
        opaque=_json_int(document, "opaque", _INT32_MIN, _INT32_MAX),
        flag=_json_int(document, "flag", _INT32_MIN, _INT32_MAX),
        remark=_json_str(document.get("remark"), "field 'remark'"),
        ext_fields=ext_fields,
        body=b"",
    )


def _encode_maps(maps: Mapping[str, str]) -> bytes:
    parts = []
    for key, value in maps.items():
        key_bytes = key.encode("utf-8", _TEXT_ERRORS)
        value_bytes = value.encode("utf-8", _TEXT_ERRORS)
        parts.append(struct.pack(">h", len(key_bytes)))
        parts.append(key_bytes)
        parts.append(struct.pack(">i", len(value_bytes)))
        parts.append(value_bytes)
    return b"".join(parts)


def encode_rocketmq_header(command: RemotingCommand) -> bytes:
    """Serialise the header of a command in the compact binary format."""
    remark = command.remark.encode("utf-8", _TEXT_ERRORS)
    try:
        ext = _encode_maps(command.ext_fields)
        return b"".join(
            (
                struct.pack(
                    ">hBhiii",
                    command.code,
                    int(LanguageCode.GO),
                    command.version,
                    command.opaque,
                    command.flag,
                    len(remark),
                ),
                remark,
                struct.pack(">i", len(ext)),
                ext,
            )
        )
    except struct.error as exc:
        raise CodecError(f"cannot encode header: {exc}") from exc


def decode_rocketmq_header(data: bytes) -> RemotingCommand:
    """Parse a binary header into a command with an empty body."""
    reader = _Reader(bytes(data))
    command = RemotingCommand()
    command.code = reader.int16()
    command.language = LanguageCode.from_byte(reader.uint8())
    command.version = reader.int16()
    command.opaque = reader.int32()
    command.flag = reader.int32()

    remark_len = reader.int32()
    if remark_len > 0:
        command.remark = reader.text(remark_len)

    ext_len = reader.int32()
    if ext_len > 0:
        fields = _Reader(reader.take(ext_len))
        while fields.remaining > 0:
            key = fields.text(fields.int16())
            value = fields.text(fields.int32())
            command.ext_fields[key] = value
    return command


class _Reader:
    """Sequential big-endian reader over a byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, length: int) -> bytes:
        if length < 0:
            raise CodecError(f"negative length: {length}")
        if length > self.remaining:
            raise CodecError(
                f"unexpected end of data: need {length} bytes, have {self.remaining}"
            )
        chunk = self._data[self._pos:self._pos + length]
        self._pos += length
        return chunk

    def _unpack(self, fmt: str) -> int:
        (value,) = struct.unpack(fmt, self.take(struct.calcsize(fmt)))
        return value

    def uint8(self) -> int:
        return self._unpack(">B")

    def int16(self) -> int:
        return self._unpack(">h")

    def int32(self) -> int:
        return self._unpack(">i")

    def text(self, length: int) -> str:
        return self.take(length).decode("utf-8", _TEXT_ERRORS)