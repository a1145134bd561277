"""
Durable token storage for the Storefront API Client.

This module persists small secrets (the access credential) across process
restarts using the system keyring, falling back to an encrypted file when no
keyring backend is usable.
"""

import os
import json
import logging
from typing import Optional, Dict
from pathlib import Path
from cryptography.fernet import Fernet, InvalidToken

from shopshared.exceptions import ErrorCode, TokenStorageError
from shopshared.interfaces import IDurableStorage

logger = logging.getLogger(__name__)


class SecureTokenStorage(IDurableStorage):
    """
    Secure key/value storage for authentication secrets.

    Uses the system keyring when available and falls back to a
    Fernet-encrypted JSON file otherwise. All failures are raised as
    TokenStorageError; callers decide whether they are fatal.
    """

    def __init__(self, service_name: str = "storefront-client", storage_dir: Optional[Path] = None):
        self.service_name = service_name
        self.keyring_available = self._check_keyring_availability()
        self.storage_dir = Path(storage_dir) if storage_dir else self._get_storage_dir()
        self.storage_path = self.storage_dir / 'tokens.enc'
        self.key_path = self.storage_dir / 'tokens.key'

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_dir(self) -> Path:
        """Get directory for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / 'storefront-client'
        return Path.home() / '.config' / 'storefront-client'

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.keyring_available:
            import keyring
            stored_key = keyring.get_password(self.service_name, "encryption_key")
            if not stored_key:
                stored_key = Fernet.generate_key().decode()
                keyring.set_password(self.service_name, "encryption_key", stored_key)
            self._encryption_key = stored_key.encode()
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
        else:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self._encryption_key = Fernet.generate_key()
            self.key_path.write_bytes(self._encryption_key)
            os.chmod(self.key_path, 0o600)

        return self._encryption_key

    def _read_file(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}

        fernet = Fernet(self._get_encryption_key())
        try:
            decrypted = fernet.decrypt(self.storage_path.read_bytes())
        except InvalidToken as e:
            raise TokenStorageError("Token file could not be decrypted",
                                    error_code=ErrorCode.STORAGE_READ_FAILED, cause=e)
        return json.loads(decrypted.decode())

    def _write_file(self, values: Dict[str, str]) -> None:
        if not values:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        fernet = Fernet(self._get_encryption_key())
        self.storage_path.write_bytes(fernet.encrypt(json.dumps(values).encode()))
        os.chmod(self.storage_path, 0o600)

    def get(self, key: str) -> Optional[str]:
        """
        Retrieve a stored value.

        Args:
            key: Storage key

        Returns:
            Stored value or None if not found

        Raises:
            TokenStorageError: If the backend cannot be read
        """
        try:
            if self.keyring_available:
                import keyring
                return keyring.get_password(self.service_name, key)
            return self._read_file().get(key)
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(f"Failed to read '{key}': {e}",
                                    error_code=ErrorCode.STORAGE_READ_FAILED, cause=e)

    def set(self, key: str, value: str) -> None:
        """
        Store a value securely.

        Args:
            key: Storage key
            value: Secret value to store

        Raises:
            TokenStorageError: If the backend cannot be written
        """
        try:
            if self.keyring_available:
                import keyring
                keyring.set_password(self.service_name, key, value)
            else:
                values = self._read_file()
                values[key] = value
                self._write_file(values)
            logger.debug(f"Stored '{key}' in token storage")
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(f"Failed to store '{key}': {e}",
                                    error_code=ErrorCode.STORAGE_WRITE_FAILED, cause=e)

    def remove(self, key: str) -> None:
        """
        Remove a stored value. Removing an absent key is not an error.

        Raises:
            TokenStorageError: If the backend cannot be updated
        """
        try:
            if self.keyring_available:
                import keyring
                from keyring.errors import PasswordDeleteError
                try:
                    keyring.delete_password(self.service_name, key)
                except PasswordDeleteError:
                    pass
            else:
                values = self._read_file()
                if key in values:
                    del values[key]
                    self._write_file(values)
        except TokenStorageError:
            raise
        except Exception as e:
            raise TokenStorageError(f"Failed to remove '{key}': {e}",
                                    error_code=ErrorCode.STORAGE_REMOVE_FAILED, cause=e)


class MemoryTokenStorage(IDurableStorage):
    """Process-local storage for sessions that must not be persisted."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)
