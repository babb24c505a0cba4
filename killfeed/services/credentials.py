# services/credentials.py
"""
At-rest encryption for game server SFTP passwords.

A Fernet key is derived per tenant from the master key and a random salt
stored next to the encrypted password, so one leaked row never exposes
another server's credentials.
"""

import base64
import logging
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from killfeed.config.settings import ENCRYPTION_MASTER_KEY
from killfeed.services.tenant import TenantKey

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Base exception for credential encryption errors."""
    pass


class DecryptionError(CredentialError):
    """Stored credential could not be decrypted (wrong key or corrupted)."""
    pass


class CredentialVault:
    """Encrypts and decrypts SFTP passwords per tenant."""

    def __init__(self, master_key: Optional[str] = None):
        master_key = master_key or ENCRYPTION_MASTER_KEY
        if not master_key:
            logger.warning("ENCRYPTION_MASTER_KEY not set - using generated key (not persistent!)")
            master_key = Fernet.generate_key().decode()
        self._master_key_bytes = master_key.encode()
        self._fernet_cache: dict[tuple[TenantKey, bytes], Fernet] = {}

    @staticmethod
    def generate_salt() -> bytes:
        return secrets.token_bytes(32)

    def _fernet(self, tenant: TenantKey, salt: bytes) -> Fernet:
        cache_key = (tenant, salt)
        if cache_key not in self._fernet_cache:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=salt + str(tenant).encode(),
                iterations=100000,
            )
            self._fernet_cache[cache_key] = Fernet(base64.urlsafe_b64encode(kdf.derive(self._master_key_bytes)))
        return self._fernet_cache[cache_key]

    def encrypt(self, plaintext: str, tenant: TenantKey, salt: bytes) -> bytes:
        """
        Encrypt a password for one tenant.

        Returns:
            Ciphertext suitable for a VARBINARY column
        """
        return self._fernet(tenant, salt).encrypt(plaintext.encode())

    def decrypt(self, ciphertext: bytes, tenant: TenantKey, salt: bytes) -> str:
        try:
            return self._fernet(tenant, salt).decrypt(bytes(ciphertext)).decode()
        except InvalidToken:
            logger.error(f"[{tenant}] Credential decryption failed: invalid token (wrong key or corrupted data)")
            raise DecryptionError(f"Failed to decrypt credential for {tenant}")


_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Shared vault built from settings."""
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault
