"""Per-owner settings such as the bank API token.

Values are opaque to banksync. Encrypted values are stored as given and only
readable when a decrypt callable is supplied.
"""

from typing import Callable, Optional

from banksync.database.base import Database
from banksync.domain.errors import ValidationError

UP_TOKEN_KEY = "up_bank_token"


class SettingsService:
    """Read and write owner settings."""

    def __init__(self, db: Database, decrypt: Optional[Callable[[str], str]] = None):
        """Initialize settings service.

        Args:
            db: Database instance
            decrypt: Turns a stored encrypted value into plain text
        """
        self.db = db
        self.decrypt = decrypt

    def set(self, key: str, value: str, owner_id: str = "default", encrypted: bool = False) -> None:
        """Store a setting. With encrypted=True the value is already ciphertext."""
        if not key:
            raise ValidationError("Setting key cannot be empty")
        if encrypted:
            self.db.set_setting(owner_id, key, value_encrypted=value)
        else:
            self.db.set_setting(owner_id, key, value_text=value)

    def get(self, key: str, owner_id: str = "default") -> Optional[str]:
        """Return a setting's plain value, or None if unset.

        Raises:
            ValidationError: If the value is encrypted and no decrypt callable is set
        """
        setting = self.db.get_setting(owner_id, key)
        if setting is None:
            return None
        if setting["value_encrypted"] is not None:
            if self.decrypt is None:
                raise ValidationError(f"Setting '{key}' is encrypted and no decrypt function is configured")
            return self.decrypt(setting["value_encrypted"])
        return setting["value_text"]

    def api_token(self, owner_id: str = "default") -> Optional[str]:
        """The owner's UP Bank personal access token."""
        return self.get(UP_TOKEN_KEY, owner_id)
