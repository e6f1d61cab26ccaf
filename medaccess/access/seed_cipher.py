"""
At-rest protection for patient seeds.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SeedCipher:
    """Fernet wrapper; without a key seeds are stored as-is."""

    def __init__(self, key: Optional[str] = None):
        self._cipher: Optional[Fernet] = Fernet(key.encode()) if key else None

    @property
    def enabled(self) -> bool:
        return self._cipher is not None

    def protect(self, seed: str) -> Tuple[str, bool]:
        if not self._cipher:
            return seed, False
        return self._cipher.encrypt(seed.encode("utf-8")).decode("utf-8"), True

    def reveal(self, stored: str, is_encrypted: bool) -> Optional[str]:
        if not is_encrypted:
            return stored
        if not self._cipher:
            logger.error("Encrypted seed found but no seed key is configured")
            return None
        try:
            return self._cipher.decrypt(stored.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Seed decryption failed")
            return None
