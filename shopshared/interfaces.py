"""
Core interfaces for the Storefront API Client.

This module defines the abstract collaborators the client is composed from,
so that transports and durable storage backends can be swapped in tests and
by embedding applications.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from .models import TransportResponse


class ITransport(ABC):
    """Interface for the outbound HTTP transport."""

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None
    ) -> TransportResponse:
        """
        Perform one HTTP call.

        Raises:
            NetworkError: On connection failures and timeouts
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources."""
        pass


class IDurableStorage(ABC):
    """Interface for key/value storage that survives process restarts."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Get a stored value, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a stored value."""
        pass
