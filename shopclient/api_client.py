"""
Authenticated API client for the Storefront API Client.

This module provides the public facade used by storefront code. It attaches
the access credential to every call, transparently renews the credential
when the server rejects it, replays the rejected call once, and reports
every outcome as a value.
"""

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from shopclient.auth.credential_store import CredentialStore
from shopclient.auth.refresh_coordinator import RefreshCoordinator
from shopclient.auth.token_storage import MemoryTokenStorage, SecureTokenStorage
from shopclient.config import ClientConfiguration, DEFAULT_EXCLUDED_ENDPOINTS
from shopclient.executor import RequestExecutor
from shopclient.transport import AiohttpTransport
from shopshared.exceptions import (
    AuthRejectedError, ErrorCode, RefreshFailedError, RetryExhaustedError,
    StorefrontClientError, handle_exception
)
from shopshared.interfaces import IDurableStorage, ITransport
from shopshared.logging_config import AuditLogger, log_structured_error
from shopshared.models import (
    ApiRequest, DefinitiveFailure, RequestAttempt, SendResult, Success,
    UnauthorizedSignal, TransportResponse, extract_error_message
)

logger = logging.getLogger(__name__)


class AuthenticatedClient:
    """
    HTTP client for a storefront API protected by a short-lived bearer credential.

    The renewal ticket is held by the server and carried by the transport
    (a session cookie); this client only ever sees the access credential.
    External code interacts exclusively through send() and the helpers
    built on it.
    """

    def __init__(
        self,
        base_url: str,
        transport: Optional[ITransport] = None,
        storage: Optional[IDurableStorage] = None,
        refresh_path: str = '/auth/refresh',
        refresh_timeout: float = 10.0,
        excluded_endpoints: Optional[Iterable[str]] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.refresh_path = refresh_path
        self.excluded_endpoints: List[str] = list(
            DEFAULT_EXCLUDED_ENDPOINTS if excluded_endpoints is None else excluded_endpoints
        )
        self.audit_logger = audit_logger or AuditLogger()

        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport()
        self.credential_store = CredentialStore(storage if storage is not None else MemoryTokenStorage())
        self.executor = RequestExecutor(self.transport, self.credential_store, self.base_url)
        self.refresh_coordinator = RefreshCoordinator(
            self.credential_store,
            self._renew_credential,
            timeout=refresh_timeout,
            audit_logger=self.audit_logger,
            base_url=self.base_url
        )

        self._session_ended_callbacks: List[Callable[[RefreshFailedError], None]] = []
        self._last_session_end: Optional[RefreshFailedError] = None

        logger.info(f"Authenticated client initialized for: {self.base_url}")

    @classmethod
    def from_config(cls, config: ClientConfiguration, persist: Optional[bool] = None) -> 'AuthenticatedClient':
        """
        Build a client from configuration.

        Args:
            config: Loaded client configuration
            persist: Override for durable credential storage

        Returns:
            Configured AuthenticatedClient
        """
        persist = config.should_persist_credential() if persist is None else persist
        storage = SecureTokenStorage(config.get_storage_service()) if persist else MemoryTokenStorage()

        return cls(
            base_url=config.get_base_url(),
            transport=AiohttpTransport(timeout=config.get_timeout(), verify_ssl=config.get_verify_ssl()),
            storage=storage,
            refresh_path=config.get_refresh_path(),
            refresh_timeout=config.get_refresh_timeout(),
            excluded_endpoints=config.get_excluded_endpoints()
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Cancel any in-flight renewal and close the transport if owned."""
        await self.refresh_coordinator.shutdown()
        if self._owns_transport:
            await self.transport.close()

    def add_session_ended_callback(self, callback: Callable[[RefreshFailedError], None]) -> None:
        """
        Add callback fired when a failed renewal ends the session.

        Args:
            callback: Function called with the RefreshFailedError, typically
                used to clear UI state and navigate to sign-in
        """
        self._session_ended_callbacks.append(callback)

    def _notify_session_ended(self, error: RefreshFailedError) -> None:
        """Notify callbacks that the session has ended."""
        # Every waiter of one failed renewal shares the same error instance.
        if error is self._last_session_end:
            return
        self._last_session_end = error

        self.audit_logger.log_session_ended(self.base_url, error)
        for callback in self._session_ended_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in session ended callback: {e}")

    def is_excluded(self, url: str) -> bool:
        """Check whether a URL must never trigger or await a credential refresh."""
        return any(fragment in url for fragment in self.excluded_endpoints)

    def is_authenticated(self) -> bool:
        """Check whether an access credential is currently held."""
        return self.credential_store.get() is not None

    async def send(self, request: ApiRequest) -> SendResult:
        """
        Send a request, renewing the credential once if the server rejects it.

        Args:
            request: The request to send

        Returns:
            Success with the response, or DefinitiveFailure carrying a
            StorefrontClientError; this method does not raise
        """
        try:
            return await self._send_attempt(RequestAttempt(request))
        except StorefrontClientError as e:
            return DefinitiveFailure(e)
        except Exception as e:
            error = handle_exception(e, context={'url': request.url})
            log_structured_error(logger, error, url=request.url)
            return DefinitiveFailure(error)

    async def _send_attempt(self, attempt: RequestAttempt, credential: Optional[str] = None) -> SendResult:
        outcome = await self.executor.execute(attempt.request, credential)

        if not isinstance(outcome, UnauthorizedSignal):
            return outcome

        request = attempt.request

        if self.is_excluded(request.url):
            message = extract_error_message(outcome.response, "Credential rejected by server")
            return DefinitiveFailure(AuthRejectedError(message, url=request.url))

        if attempt.retried:
            logger.warning(f"{request.method} {request.url} still unauthorized after credential refresh")
            return DefinitiveFailure(RetryExhaustedError(url=request.url))

        attempt = attempt.mark_retried()

        try:
            new_credential = await self.refresh_coordinator.refresh_or_wait()
        except RefreshFailedError as e:
            self._notify_session_ended(e)
            return DefinitiveFailure(e)

        logger.debug(f"Replaying {request.method} {request.url} with refreshed credential")
        return await self._send_attempt(attempt, new_credential)

    async def _renew_credential(self) -> str:
        """
        Call the renewal endpoint and return the new access credential.

        The renewal ticket is carried by the transport's cookie jar, so no
        Authorization header is attached.

        Raises:
            RefreshFailedError: If the server rejects the renewal or the
                response carries no credential
            NetworkError: If the renewal call cannot be completed
        """
        url = f"{self.base_url}/{self.refresh_path.lstrip('/')}"
        response = await self.transport.send('POST', url, headers={}, body={})

        if not response.ok:
            message = extract_error_message(response, f"Renewal rejected with status {response.status}")
            raise RefreshFailedError(message, context={'status': response.status})

        credential = _extract_access_token(response)
        if not credential:
            raise RefreshFailedError("Renewal response did not contain an access credential",
                                     error_code=ErrorCode.AUTH_REFRESH_FAILED)
        return credential

    # Convenience methods built on send()

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None
    ) -> SendResult:
        """Build an ApiRequest and send it."""
        try:
            api_request = ApiRequest(method, url, headers=headers or {}, body=body, params=params)
        except ValueError as e:
            return DefinitiveFailure(handle_exception(e, context={'url': url}))
        return await self.send(api_request)

    async def get(self, url: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> SendResult:
        return await self.request('GET', url, params=params, **kwargs)

    async def post(self, url: str, body: Any = None, **kwargs) -> SendResult:
        return await self.request('POST', url, body=body, **kwargs)

    async def put(self, url: str, body: Any = None, **kwargs) -> SendResult:
        return await self.request('PUT', url, body=body, **kwargs)

    async def patch(self, url: str, body: Any = None, **kwargs) -> SendResult:
        return await self.request('PATCH', url, body=body, **kwargs)

    async def delete(self, url: str, **kwargs) -> SendResult:
        return await self.request('DELETE', url, **kwargs)

    # Session lifecycle

    async def login(self, email: str, password: str) -> SendResult:
        """
        Sign in and store the returned access credential.

        The server sets the renewal ticket as a cookie on the same response.

        Args:
            email: Account email or identifier
            password: Account password

        Returns:
            Success with the login response, or DefinitiveFailure
        """
        result = await self.post('/auth/login', body={'email': email, 'password': password})

        if isinstance(result, Success):
            credential = _extract_access_token(result.response)
            if not credential:
                error = AuthRejectedError("Login response did not contain an access credential",
                                          error_code=ErrorCode.AUTH_LOGIN_FAILED, url='/auth/login')
                self.audit_logger.log_login(self.base_url, False, error.message)
                return DefinitiveFailure(error)
            self.credential_store.set(credential)
            self.audit_logger.log_login(self.base_url, True)
        else:
            self.audit_logger.log_login(self.base_url, False, result.error.message)

        return result

    async def logout(self) -> SendResult:
        """Sign out on the server and clear the local credential regardless of the outcome."""
        try:
            result = await self.post('/auth/logout')
        finally:
            self.credential_store.clear()
            self.audit_logger.log_logout(self.base_url)
        return result

    async def refresh(self) -> SendResult:
        """
        Renew the credential explicitly.

        Joins an in-flight renewal if there is one.

        Returns:
            Success whose response payload is ``{"access_token": ...}``, or
            DefinitiveFailure carrying RefreshFailedError
        """
        try:
            credential = await self.refresh_coordinator.refresh_or_wait()
        except RefreshFailedError as e:
            self._notify_session_ended(e)
            return DefinitiveFailure(e)
        return Success(TransportResponse(status=200, data={'access_token': credential}))


def _extract_access_token(response: TransportResponse) -> Optional[str]:
    payload = response.payload
    if isinstance(payload, dict):
        token = payload.get('access_token') or payload.get('accessToken')
        if isinstance(token, str) and token:
            return token
    return None
