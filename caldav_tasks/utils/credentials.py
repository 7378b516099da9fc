"""Secure credential storage using system keyring."""

import logging

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

# Keyring service name for caldav-tasks
SERVICE_NAME = "caldav-tasks"


class CredentialStore:
    """Stores CalDAV account passwords in the system keyring, keyed by account id."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    @staticmethod
    def _key(account_id: str) -> str:
        return f"account:{account_id}"

    def set_password(self, account_id: str, password: str) -> None:
        """
        Store an account password in the system keyring.

        Raises:
            keyring.errors.PasswordSetError: If password cannot be stored
        """
        try:
            keyring.set_password(self.service_name, self._key(account_id), password)
            logger.info(f"Stored password for account: {account_id}")
        except Exception as e:
            logger.error(f"Failed to store account password: {e}")
            raise

    def get_password(self, account_id: str) -> str | None:
        """Return the stored password, or None if missing or the keyring fails."""
        try:
            password = keyring.get_password(self.service_name, self._key(account_id))
            if not password:
                logger.debug(f"No password found for account: {account_id}")
            return password
        except Exception as e:
            logger.error(f"Failed to retrieve account password: {e}")
            return None

    def delete_password(self, account_id: str) -> bool:
        try:
            keyring.delete_password(self.service_name, self._key(account_id))
            logger.info(f"Deleted password for account: {account_id}")
            return True
        except keyring.errors.PasswordDeleteError:
            logger.warning(f"No password found to delete for account: {account_id}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete account password: {e}")
            return False

    def has_password(self, account_id: str) -> bool:
        return self.get_password(account_id) is not None
