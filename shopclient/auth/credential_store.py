"""
Credential store for the Storefront API Client.

Keeps the current access credential in memory and mirrors it to durable
storage so a restarted process can resume the session.
"""

import logging
from typing import Optional

from shopshared.interfaces import IDurableStorage
from shopshared.logging_config import mask_credential

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "storefront_access_token"


class CredentialStore:
    """
    In-process cache of the access credential.

    Durable storage is consulted only until the credential is first loaded,
    set or cleared; from then on memory is authoritative. Storage failures
    never escape: a failed read is treated as "absent" and a failed write or
    removal is logged and ignored.
    """

    def __init__(self, storage: Optional[IDurableStorage] = None, key: str = ACCESS_TOKEN_KEY):
        self.storage = storage
        self.key = key
        self._credential: Optional[str] = None
        self._synced = storage is None

    def get(self) -> Optional[str]:
        """
        Get the current credential.

        Returns:
            The credential from memory, else from durable storage, else None
        """
        if self._synced or self._credential:
            return self._credential

        try:
            stored = self.storage.get(self.key)
        except Exception as e:
            logger.warning(f"Durable credential read failed, treating as absent: {e}")
            return None

        self._synced = True
        if stored:
            self._credential = stored
            logger.debug(f"Restored credential from durable storage: {mask_credential(stored)}")
        return self._credential

    def set(self, credential: str) -> None:
        """Replace the current credential in memory and durable storage."""
        if not credential:
            raise ValueError("Credential cannot be empty")

        self._credential = credential
        self._synced = True

        if self.storage is not None:
            try:
                self.storage.set(self.key, credential)
            except Exception as e:
                logger.warning(f"Failed to persist credential: {e}")

        logger.debug(f"Credential updated: {mask_credential(credential)}")

    def clear(self) -> None:
        """Remove the credential from memory and durable storage."""
        self._credential = None
        self._synced = True

        if self.storage is not None:
            try:
                self.storage.remove(self.key)
            except Exception as e:
                logger.warning(f"Failed to remove persisted credential: {e}")

        logger.debug("Credential cleared")
