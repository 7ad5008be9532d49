"""Remote mirror credentials in the system keychain."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

__all__ = ["KeychainManager", "StoredCredentials"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "Commesse"


@dataclass
class StoredCredentials:
    """API token for one remote mirror, bound to this device."""

    api_url: str
    api_token: str
    device_id: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "api_url": self.api_url,
                "api_token": self.api_token,
                "device_id": self.device_id,
            }
        )

    @classmethod
    def from_json(cls, data: str) -> "StoredCredentials":
        parsed = json.loads(data)
        return cls(
            api_url=parsed["api_url"],
            api_token=parsed["api_token"],
            device_id=parsed["device_id"],
        )


class KeychainManager:
    """Stores one credential entry per remote URL."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    @staticmethod
    def _account(api_url: str) -> str:
        return api_url.rstrip("/")

    def store(self, credentials: StoredCredentials) -> bool:
        """Store credentials for their remote URL.

        Returns:
            True if stored successfully
        """
        try:
            keyring.set_password(
                self.service_name, self._account(credentials.api_url), credentials.to_json()
            )
            logger.info(f"Credentials stored for {credentials.api_url}")
            return True
        except KeyringError as e:
            logger.error(f"Failed to store credentials: {e}")
            return False

    def load(self, api_url: str) -> Optional[StoredCredentials]:
        """Load the credentials for a remote URL, or None if there are none."""
        try:
            data = keyring.get_password(self.service_name, self._account(api_url))
            if data:
                return StoredCredentials.from_json(data)
            return None
        except KeyringError as e:
            logger.error(f"Failed to load credentials: {e}")
            return None
        except (json.JSONDecodeError, KeyError) as e:
            logger.error(f"Invalid credential format: {e}")
            return None

    def delete(self, api_url: str) -> bool:
        """Delete stored credentials.

        Returns:
            True if deleted (or didn't exist)
        """
        try:
            keyring.delete_password(self.service_name, self._account(api_url))
            logger.info(f"Credentials deleted for {api_url}")
            return True
        except PasswordDeleteError:
            return True
        except KeyringError as e:
            logger.error(f"Failed to delete credentials: {e}")
            return False
