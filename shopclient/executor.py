"""
Request execution for the Storefront API Client.

The executor performs exactly one outbound call with the current access
credential attached and classifies the outcome. It never retries and never
touches the refresh protocol.
"""

import logging
from typing import Optional
from urllib.parse import urljoin

from shopclient.auth.credential_store import CredentialStore
from shopshared.exceptions import HTTPStatusError, NetworkError
from shopshared.interfaces import ITransport
from shopshared.models import (
    ApiRequest, DefinitiveFailure, ExecutionOutcome, Success, UnauthorizedSignal,
    extract_error_message
)

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Performs one authenticated call and classifies the result."""

    def __init__(self, transport: ITransport, credential_store: CredentialStore, base_url: str):
        self.transport = transport
        self.credential_store = credential_store
        self.base_url = base_url.rstrip('/') + '/'

    def resolve_url(self, url: str) -> str:
        """Resolve a request path against the API base URL."""
        return urljoin(self.base_url, url.lstrip('/'))

    async def execute(self, request: ApiRequest, credential: Optional[str] = None) -> ExecutionOutcome:
        """
        Execute a request once.

        Args:
            request: The request to send
            credential: Credential to attach; defaults to the stored one

        Returns:
            Success for 2xx responses, UnauthorizedSignal for 401, and
            DefinitiveFailure for any other status or a network error
        """
        credential = credential or self.credential_store.get()
        if credential:
            request = request.with_bearer(credential)

        url = self.resolve_url(request.url)

        try:
            response = await self.transport.send(
                request.method,
                url,
                headers=request.headers,
                body=request.body,
                params=request.params
            )
        except NetworkError as e:
            logger.warning(f"Network error on {request.method} {request.url}: {e.message}")
            return DefinitiveFailure(e)

        if response.ok:
            return Success(response)

        if response.status == 401:
            logger.debug(f"{request.method} {request.url} rejected with 401")
            return UnauthorizedSignal(request, response)

        message = extract_error_message(response, f"Request failed with status {response.status}")
        logger.info(f"{request.method} {request.url} failed ({response.status}): {message}")
        return DefinitiveFailure(HTTPStatusError(message, status=response.status, url=request.url))
