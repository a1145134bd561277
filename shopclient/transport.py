"""
HTTP transport for the Storefront API Client.

This module wraps an aiohttp ClientSession behind the ITransport interface.
The session keeps a cookie jar, so the server-held renewal ticket travels
with every call (including the renewal call) without the client touching it.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from shopshared.exceptions import ErrorCode, NetworkError
from shopshared.interfaces import ITransport
from shopshared.models import TransportResponse

logger = logging.getLogger(__name__)

USER_AGENT = 'StorefrontClient/1.0'


class AiohttpTransport(ITransport):
    """
    aiohttp-backed transport.

    A single session is created lazily and reused for every call; use the
    transport as an async context manager or call close() when done.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        session: Optional[ClientSession] = None
    ):
        self.timeout = ClientTimeout(total=timeout)
        self.verify_ssl = verify_ssl
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=20,
                limit_per_host=10,
                keepalive_timeout=30,
                ssl=None if self.verify_ssl else False
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                # unsafe=True keeps cookies set by IP-address hosts (local dev servers)
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                headers={'User-Agent': USER_AGENT}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._session and not self._session.closed and self._owns_session:
            await self._session.close()
        self._session = None

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

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers
            body: JSON-serialisable request body
            params: Query parameters

        Returns:
            Decoded response for any HTTP status

        Raises:
            NetworkError: On connection failures and timeouts
        """
        session = await self._ensure_session()
        request_headers: Dict[str, str] = dict(headers or {})
        if body is not None:
            request_headers.setdefault('Content-Type', 'application/json')

        logger.debug(f"{method} {url}")

        try:
            async with session.request(
                method=method,
                url=url,
                json=body,
                params=params,
                headers=request_headers
            ) as response:
                data = await self._read_body(response)
                return TransportResponse(
                    status=response.status,
                    data=data,
                    headers=dict(response.headers),
                    url=str(response.url)
                )

        except asyncio.TimeoutError as e:
            raise NetworkError(f"Request to {url} timed out",
                               error_code=ErrorCode.NETWORK_TIMEOUT, context={'url': url}, cause=e)
        except aiohttp.ClientConnectorCertificateError as e:
            raise NetworkError(f"TLS verification failed for {url}: {e}",
                               error_code=ErrorCode.NETWORK_SSL_ERROR, context={'url': url}, cause=e)
        except aiohttp.ClientConnectorError as e:
            error_code = ErrorCode.NETWORK_CONNECTION_FAILED
            if 'name or service not known' in str(e).lower() or 'nodename nor servname' in str(e).lower():
                error_code = ErrorCode.NETWORK_DNS_RESOLUTION_FAILED
            raise NetworkError(f"Cannot connect to {url}: {e}",
                               error_code=error_code, context={'url': url}, cause=e)
        except (ClientError, OSError) as e:
            raise NetworkError(f"Request to {url} failed: {e}",
                               error_code=ErrorCode.NETWORK_CONNECTION_FAILED, context={'url': url}, cause=e)

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, falling back to text."""
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
