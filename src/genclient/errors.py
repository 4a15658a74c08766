"""Application-level exception types and failure values for genclient."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ErrorKind(StrEnum):
    """Classification of every failure the pipeline can surface."""

    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    CLIENT_ERROR = "client_error"
    DECODE_ERROR = "decode_error"
    UNKNOWN = "unknown"


class DecodeReason(StrEnum):
    NO_SHAPE_MATCHED = "no_shape_matched"
    INVALID_ENCODING = "invalid_encoding"


@dataclass(frozen=True)
class Failure:
    """Terminal failure published to the presentation layer."""

    kind: ErrorKind
    message: str
    status_code: int | None = None
    field_errors: dict[str, list[str]] = field(default_factory=dict)
    reason: DecodeReason | None = None


class GenClientError(Exception):
    """Base exception for genclient."""

    def to_failure(self) -> Failure:
        return Failure(kind=ErrorKind.UNKNOWN, message=str(self) or type(self).__name__)


class ConfigurationError(GenClientError):
    """Raised when settings are missing or inconsistent."""


class RequestError(GenClientError):
    """Raised by the request client once a call has been classified."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        field_errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.field_errors = field_errors or {}

    def __repr__(self) -> str:
        return f"RequestError(kind={self.kind.value!r}, status_code={self.status_code!r}, message={self.message!r})"

    def to_failure(self) -> Failure:
        return Failure(
            kind=self.kind,
            message=self.message,
            status_code=self.status_code,
            field_errors=dict(self.field_errors),
        )


class DecodeError(GenClientError):
    """Raised when a payload arrived but holds nothing usable."""

    def __init__(self, reason: DecodeReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecodeError):
            return NotImplemented
        return self.reason is other.reason and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.reason, self.message))

    def to_failure(self) -> Failure:
        return Failure(kind=ErrorKind.DECODE_ERROR, message=self.message, reason=self.reason)


def upload_rejected(message: str, *, field_name: str = "file") -> RequestError:
    """Build the validation error raised for uploads refused before sending."""

    return RequestError(ErrorKind.VALIDATION, message, field_errors={field_name: [message]})
