"""
Core data models for the Storefront API Client.

This module defines the request and response values that flow between the
transport, the request executor and the authenticated client, together with
the outcome types returned to callers.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Union
from enum import Enum

from shopshared.exceptions import StorefrontClientError


class RefreshState(Enum):
    """State of the credential renewal protocol."""
    IDLE = "idle"
    REFRESHING = "refreshing"


class HTTPMethod(Enum):
    """HTTP methods accepted by the client."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ApiRequest:
    """An immutable outbound API call."""
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    params: Optional[Mapping[str, Any]] = None

    def __post_init__(self):
        if not self.url:
            raise ValueError("Request URL cannot be empty")
        method = self.method.upper()
        if method not in HTTPMethod.__members__:
            raise ValueError(f"Unsupported HTTP method: {self.method}")
        object.__setattr__(self, 'method', method)
        object.__setattr__(self, 'headers', dict(self.headers))

    def with_headers(self, **extra: str) -> 'ApiRequest':
        """Return a copy of this request with additional headers."""
        headers = dict(self.headers)
        headers.update(extra)
        return replace(self, headers=headers)

    def with_bearer(self, credential: str) -> 'ApiRequest':
        """Return a copy of this request carrying the given bearer credential."""
        return self.with_headers(Authorization=f"Bearer {credential}")


@dataclass(frozen=True)
class RequestAttempt:
    """
    A logical request paired with its retry marker.

    The marker travels alongside the request rather than inside it, so the
    same ApiRequest value can be replayed without being mutated.
    """
    request: ApiRequest
    retried: bool = False

    def mark_retried(self) -> 'RequestAttempt':
        return replace(self, retried=True)


@dataclass
class TransportResponse:
    """A decoded HTTP response."""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def payload(self) -> Any:
        """
        Unwrap the backend envelope.

        The storefront backend answers with
        ``{"success": ..., "statusCode": ..., "data": ..., "message": ...}``;
        this returns ``data`` when the envelope is present and the raw body
        otherwise.
        """
        if isinstance(self.data, dict) and 'data' in self.data and 'success' in self.data:
            return self.data['data']
        return self.data


@dataclass(frozen=True)
class Success:
    """The call completed with a 2xx response."""
    response: TransportResponse

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class UnauthorizedSignal:
    """The server rejected the credential attached to ``request``."""
    request: ApiRequest
    response: Optional[TransportResponse] = None


@dataclass(frozen=True)
class DefinitiveFailure:
    """The call failed and will not be retried by the client."""
    error: StorefrontClientError

    @property
    def ok(self) -> bool:
        return False


ExecutionOutcome = Union[Success, UnauthorizedSignal, DefinitiveFailure]
SendResult = Union[Success, DefinitiveFailure]


def extract_error_message(response: Optional[TransportResponse], fallback: str) -> str:
    """
    Extract a human-readable error message from a backend response.

    Args:
        response: Response returned by the server (may be None)
        fallback: Message used when the body carries nothing usable

    Returns:
        The backend message, the first entry of a message list, the
        ``error`` field, or ``fallback``
    """
    data = response.data if response is not None else None

    if isinstance(data, dict):
        message = data.get('message')
        if isinstance(message, str) and message.strip():
            return message.strip()
        if isinstance(message, list) and message and isinstance(message[0], str) and message[0].strip():
            return message[0].strip()

        error = data.get('error')
        if isinstance(error, str) and error.strip():
            return error.strip()

    elif isinstance(data, str) and data.strip():
        return data.strip()

    return fallback
