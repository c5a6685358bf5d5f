"""Encryption at rest for embedded profile snapshots.

Only the snapshot JSON is encrypted; times, names and percentages stay in
plain columns so the history can be queried without the key.

``ENCRYPTION_KEY`` may hold several comma-separated Fernet keys. The first
one encrypts; all of them decrypt, which allows rotating to a new key while
old switch records stay readable.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a key is unusable or a token cannot be decrypted."""


class SnapshotEncryptor:
    """Fernet encryption for snapshot text, with key rotation.

    Usage::

        encryptor = SnapshotEncryptor(settings.encryption_key)
        token = encryptor.encrypt(profile.to_json())
        profile_json = encryptor.decrypt(token)
    """

    def __init__(self, key: str) -> None:
        """Build the key ring from ``key``.

        Args:
            key: One Fernet key, or several separated by commas (newest first).

        Raises:
            EncryptionError: If no key is given or any key is malformed.
        """
        keys = [part.strip() for part in (key or "").split(",") if part.strip()]
        if not keys:
            raise EncryptionError("Encryption key must not be empty")
        fernets = []
        for index, value in enumerate(keys):
            try:
                fernets.append(Fernet(value.encode("ascii")))
            except (TypeError, ValueError) as exc:
                raise EncryptionError(f"Invalid encryption key #{index + 1}: {exc}") from exc
        self._fernet = MultiFernet(fernets)
        self.key_count = len(fernets)
        if self.key_count > 1:
            logger.info("Snapshot encryption using %d keys (first key encrypts)", self.key_count)

    def encrypt(self, text: str | None) -> str | None:
        if text is None:
            return None
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str | None:
        """Decrypt with whichever configured key matches; ``None`` passes through.

        Raises:
            EncryptionError: If no configured key can decrypt ``token``.
        """
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise EncryptionError("Snapshot could not be decrypted with any configured key") from exc

    def rotate(self, token: str) -> str:
        """Re-encrypt ``token`` under the first key.

        Raises:
            EncryptionError: If no configured key can decrypt ``token``.
        """
        try:
            return self._fernet.rotate(token.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise EncryptionError("Snapshot could not be decrypted with any configured key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")
