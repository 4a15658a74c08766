"""Normalize heterogeneous response payloads into one typed artifact.

Backend endpoints disagree on where the useful value lives: some answer with
a bare string, some wrap it under ``data.<field>``, others put ``image`` or
``imageUrl`` at the top level, and binary content arrives base64 encoded with
or without a ``data:`` URL prefix. `decode_artifact` walks an ordered list of
tagged shape matchers, takes the first string it finds and, when the caller
expects binary content, cleans and decodes it.

Decoding is a pure function of ``(raw, expect, min_length)``.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from genclient.envelope import path_of
from genclient.errors import DecodeError, DecodeReason

DEFAULT_MIN_LENGTH = 64
DEFAULT_MEDIA_TYPE = "application/octet-stream"

SHAPE_RAW_STRING = "raw_string"
SHAPE_RAW_BYTES = "raw_bytes"

# Priority order matters: first match wins.
FIELD_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "article"),
    ("data", "content"),
    ("data", "image"),
    ("data", "imageUrl"),
    ("data", "url"),
    ("data",),
    ("content",),
    ("article",),
    ("image",),
    ("imageUrl",),
    ("processedImage",),
    ("url",),
    ("result",),
)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^,]*)?),", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_URLSAFE_BASE64_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")

_MAGIC_BYTES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
)


class ArtifactKind(StrEnum):
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class Artifact:
    """Normalized result of a decode."""

    kind: ArtifactKind
    payload: str | bytes
    source_shape: str
    media_type: str | None = None

    @property
    def text(self) -> str:
        if not isinstance(self.payload, str):
            raise TypeError("binary artifact has no text payload")
        return self.payload

    @property
    def data(self) -> bytes:
        if not isinstance(self.payload, bytes):
            raise TypeError("text artifact has no binary payload")
        return self.payload


@dataclass(frozen=True)
class _Candidate:
    value: str | bytes
    shape: str


def _field_tag(path: tuple[str, ...]) -> str:
    return "field:" + ".".join(path)


def _match_raw(raw: Any) -> _Candidate | None:
    if isinstance(raw, str):
        return _Candidate(raw, SHAPE_RAW_STRING)
    if isinstance(raw, bytes | bytearray | memoryview):
        return _Candidate(bytes(raw), SHAPE_RAW_BYTES)
    return None


def _match_field_paths(raw: Any) -> _Candidate | None:
    for path in FIELD_PATHS:
        value = path_of(raw, path)
        if isinstance(value, str):
            return _Candidate(value, _field_tag(path))
    return None


def _match_heuristic(raw: Any, min_length: int) -> _Candidate | None:
    if not isinstance(raw, Mapping):
        return None
    for key in sorted(raw, key=str):
        value = raw[key]
        if isinstance(value, str) and len(value) > min_length:
            return _Candidate(value, f"heuristic:{key}")
    return None


def find_candidate(raw: Any, *, min_length: int = DEFAULT_MIN_LENGTH) -> tuple[str | bytes, str]:
    """Return the first string-bearing value in ``raw`` and its shape tag."""

    candidate = _match_raw(raw) or _match_field_paths(raw) or _match_heuristic(raw, min_length)
    if candidate is None:
        raise DecodeError(DecodeReason.NO_SHAPE_MATCHED, f"no usable value in {type(raw).__name__} payload")
    return candidate.value, candidate.shape


def sniff_media_type(data: bytes) -> str | None:
    for magic, media_type in _MAGIC_BYTES:
        if data.startswith(magic):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _split_data_url(value: str) -> tuple[str | None, str]:
    match = _DATA_URL_RE.match(value.lstrip())
    if match is None:
        return None, value
    mime = match.group("mime").strip().lower() or None
    return mime, value.lstrip()[match.end() :]


def clean_base64(value: str) -> str:
    """Strip a data URL prefix and whitespace, then pad to a multiple of 4."""

    _, body = _split_data_url(value)
    body = _WHITESPACE_RE.sub("", body)
    remainder = len(body) % 4
    if remainder:
        body += "=" * (4 - remainder)
    return body


def _strict_decode(value: str, pattern: re.Pattern[str], altchars: bytes | None = None) -> bytes | None:
    if not pattern.match(value):
        return None
    try:
        return base64.b64decode(value, altchars=altchars, validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_base64(value: str) -> tuple[bytes, str | None]:
    """Decode a base64 payload, returning bytes and the data URL mime type if any."""

    mime, _ = _split_data_url(value)
    data = _strict_decode(clean_base64(value), _BASE64_RE)
    if data is None:
        # One more try on the untouched input, for URL-safe alphabets.
        data = _strict_decode(value, _URLSAFE_BASE64_RE, altchars=b"-_")
    if not data:
        raise DecodeError(DecodeReason.INVALID_ENCODING, "payload is not valid base64")
    return data, mime


def decode_artifact(
    raw: Any,
    expect: ArtifactKind,
    *,
    min_length: int = DEFAULT_MIN_LENGTH,
) -> Artifact:
    """Decode ``raw`` into an `Artifact` of the expected kind.

    Raises:
        DecodeError: ``NO_SHAPE_MATCHED`` when no string-bearing shape exists,
            ``INVALID_ENCODING`` when binary content cannot be decoded.
    """

    value, shape = find_candidate(raw, min_length=min_length)

    if expect is ArtifactKind.TEXT:
        if isinstance(value, bytes):
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError(DecodeReason.INVALID_ENCODING, "payload is not valid utf-8 text") from exc
        return Artifact(kind=ArtifactKind.TEXT, payload=value, source_shape=shape)

    if isinstance(value, bytes):
        if not value:
            raise DecodeError(DecodeReason.INVALID_ENCODING, "binary payload is empty")
        data, mime = value, None
    else:
        data, mime = decode_base64(value)
    media_type = mime or sniff_media_type(data) or DEFAULT_MEDIA_TYPE
    return Artifact(kind=ArtifactKind.BINARY, payload=data, source_shape=shape, media_type=media_type)
