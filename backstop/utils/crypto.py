"""
Encryption of the stored OAuth refresh token.

Uses AES-GCM with a key derived from the shared BACKUP_ENCRYPTION_KEY secret.
Each message carries its own random 96-bit nonce ahead of the ciphertext.
"""

import os
import base64
import binascii
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


TOKEN_VERSION = 'v2'
NONCE_SIZE = 12


class CredentialError(Exception):
    """Raised when a stored credential cannot be encrypted or decrypted."""
    pass


class TokenCipher:
    """
    Authenticated encryption for credentials stored in BackupConfig.

    Token format: ``v2:<base64url(nonce || ciphertext || tag)>``
    """

    def __init__(self, secret: str):
        """
        Derive the AES-256 key from the shared secret.

        Args:
            secret: Shared symmetric secret (BACKUP_ENCRYPTION_KEY)

        Raises:
            CredentialError: If the secret is empty
        """
        if not secret:
            raise CredentialError("Encryption key not configured")

        # Fixed salt: the secret itself is the only key material
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'backstop_refresh_token_salt_v2',
            iterations=100000,
        )
        self._aead = AESGCM(kdf.derive(secret.encode()))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: String to encrypt

        Returns:
            Versioned, base64url-encoded token
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode(), TOKEN_VERSION.encode())
        return f"{TOKEN_VERSION}:{base64.urlsafe_b64encode(nonce + sealed).decode()}"

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Args:
            token: Versioned token

        Returns:
            Decrypted plaintext string

        Raises:
            CredentialError: On unknown version, malformed data or failed authentication
        """
        version, _, payload = token.partition(':')
        if version != TOKEN_VERSION or not payload:
            raise CredentialError(f"Unsupported credential format: {version!r}")

        try:
            raw = base64.urlsafe_b64decode(payload.encode())
        except (binascii.Error, ValueError) as e:
            raise CredentialError(f"Malformed credential: {e}")

        if len(raw) <= NONCE_SIZE:
            raise CredentialError("Malformed credential: too short")

        try:
            plaintext = self._aead.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], TOKEN_VERSION.encode())
        except InvalidTag:
            raise CredentialError("Credential authentication failed (wrong key or tampered data)")

        return plaintext.decode()


def encrypt_refresh_token(refresh_token: str, secret: str) -> str:
    """Encrypt a refresh token for storage in BackupConfig.encrypted_refresh_token."""
    return TokenCipher(secret).encrypt(refresh_token)


def decrypt_refresh_token(token: str, secret: str) -> str:
    """Decrypt BackupConfig.encrypted_refresh_token."""
    return TokenCipher(secret).decrypt(token)
