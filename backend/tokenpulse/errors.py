from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# JSON-RPC error codes some Solana providers use for throttling
JSONRPC_RATE_LIMIT_CODES = {-32005, -32011}


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"


class UpstreamError(Exception):
    """Failure talking to an upstream API (RPC, Helius REST or Jupiter)."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(UpstreamError):
    kind = ErrorKind.RATE_LIMITED


class MalformedResponseError(UpstreamError):
    kind = ErrorKind.MALFORMED


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return "429" in message or "rate limit" in message


def is_retryable(error: BaseException) -> bool:
    return not isinstance(error, MalformedResponseError)


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of an upstream query: a value, or the error that prevented it.

    Callers pick the fallback (``unwrap_or``) or decide the failure must
    propagate (``unwrap``).
    """

    value: Optional[T] = None
    error: Optional[UpstreamError] = None

    @classmethod
    def success(cls, value: T) -> "QueryResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: UpstreamError) -> "QueryResult[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def unwrap_or(self, fallback: T) -> T:
        return self.value if self.error is None else fallback  # type: ignore[return-value]
