"""
Refresh coordination for the Storefront API Client.

This module guarantees that a burst of requests discovering an expired
credential at the same time results in exactly one renewal call, and that
every caller observes the same outcome of that call.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from shopclient.auth.credential_store import CredentialStore
from shopshared.exceptions import ErrorCode, RefreshFailedError, handle_exception
from shopshared.logging_config import AuditLogger, mask_credential
from shopshared.models import RefreshState

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """
    Single-flight credential renewal.

    The first caller that needs a refresh moves the coordinator from IDLE to
    REFRESHING and starts the renewal call in its own task; callers arriving
    while REFRESHING only enqueue a future. When the renewal settles, the
    coordinator returns to IDLE and resolves every queued future, in arrival
    order, with the same credential or the same RefreshFailedError.

    State changes happen only between awaits, so on a single event loop the
    IDLE -> REFRESHING transition is observed by exactly one caller.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        renew: Callable[[], Awaitable[str]],
        timeout: float = 10.0,
        audit_logger: Optional[AuditLogger] = None,
        base_url: Optional[str] = None
    ):
        """
        Args:
            credential_store: Store updated on success and cleared on failure
            renew: Coroutine factory performing the renewal call and returning
                the new access credential
            timeout: Upper bound in seconds for the renewal call
            audit_logger: Receives one audit event per settled renewal
            base_url: API base URL, used for audit context only
        """
        if timeout <= 0:
            raise ValueError("Refresh timeout must be positive")

        self.credential_store = credential_store
        self.timeout = timeout
        self.audit_logger = audit_logger or AuditLogger()
        self.base_url = base_url

        self._renew = renew
        self._state = RefreshState.IDLE
        self._waiters: List[asyncio.Future] = []
        self._refresh_task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._refresh_count = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state is RefreshState.REFRESHING

    @property
    def pending_count(self) -> int:
        """Number of callers waiting on the in-flight renewal."""
        return len(self._waiters)

    @property
    def refresh_count(self) -> int:
        """Number of renewal calls issued by this coordinator."""
        return self._refresh_count

    async def refresh_or_wait(self) -> str:
        """
        Obtain a renewed credential, starting a renewal only if none is in flight.

        Returns:
            The new access credential

        Raises:
            RefreshFailedError: If the shared renewal was rejected, errored,
                or exceeded the timeout
        """
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)

        if self._state is RefreshState.IDLE:
            self._state = RefreshState.REFRESHING
            self._started_at = loop.time()
            self._refresh_count += 1
            self._refresh_task = asyncio.create_task(self._run_refresh())
            logger.info("Access credential rejected, starting credential refresh")
        else:
            logger.debug(f"Credential refresh in flight, waiting ({len(self._waiters)} queued)")

        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
                logger.debug("Waiter cancelled and removed from refresh queue")
            elif waiter.done() and not waiter.cancelled():
                # Mark a settled failure as retrieved.
                waiter.exception()
            raise

    async def _run_refresh(self) -> None:
        """Perform the renewal call and settle every waiter with its outcome."""
        try:
            credential = await asyncio.wait_for(self._renew(), timeout=self.timeout)
            if not credential:
                raise RefreshFailedError("Renewal response did not contain an access credential")
        except asyncio.CancelledError:
            self._settle_failure(RefreshFailedError("Credential refresh was cancelled"))
            raise
        except asyncio.TimeoutError as e:
            self._settle_failure(RefreshFailedError(
                f"Credential refresh timed out after {self.timeout}s",
                error_code=ErrorCode.AUTH_REFRESH_TIMEOUT,
                cause=e
            ))
        except RefreshFailedError as e:
            self._settle_failure(e)
        except Exception as e:
            error = handle_exception(e)
            self._settle_failure(RefreshFailedError(
                f"Credential refresh failed: {error.message}",
                cause=error
            ))
        else:
            self._settle_success(credential)

    def _take_waiters(self) -> List[asyncio.Future]:
        waiters, self._waiters = self._waiters, []
        self._state = RefreshState.IDLE
        self._refresh_task = None
        return waiters

    def _elapsed(self) -> Optional[float]:
        if self._started_at is None:
            return None
        return asyncio.get_running_loop().time() - self._started_at

    def _settle_success(self, credential: str) -> None:
        self.credential_store.set(credential)
        waiters = self._take_waiters()

        logger.info(f"Credential refreshed ({mask_credential(credential)}), "
                    f"releasing {len(waiters)} waiting request(s)")
        self.audit_logger.log_refresh(self.base_url, True, len(waiters), self._elapsed())

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(credential)

    def _settle_failure(self, error: RefreshFailedError) -> None:
        self.credential_store.clear()
        waiters = self._take_waiters()

        logger.warning(f"Credential refresh failed, rejecting {len(waiters)} waiting request(s): {error.message}")
        self.audit_logger.log_refresh(self.base_url, False, len(waiters), self._elapsed(),
                                      failure_reason=error.message)

        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    async def shutdown(self) -> None:
        """Cancel an in-flight renewal; its waiters receive RefreshFailedError."""
        task = self._refresh_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
