"""
Key derivation and symmetric encryption for user data and tokens

Every user file is encrypted with a key stretched from the server master key
and the user's password hash, so a password change re-keys the account. Two
ciphertext formats are understood:

    v2      b"NS2" + 12 byte random nonce + AES-256-GCM ciphertext
    legacy  AES-256-CBC/PKCS7 under the fixed server-wide IV, no header

New data is written as v2 unless RANDOM_NONCE is disabled. Legacy data stays
readable so existing files migrate as they are rewritten.
"""

import hashlib
import json
import logging
import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from nosuite.core.errors import ServiceNotReady

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
V2_HEADER = b"NS2"

# Returned by decrypt_json so that a stored JSON null stays distinguishable
# from data that failed to decrypt.
DECRYPT_FAILED = object()


def hash_password(password: str) -> str:
    """SHA-256 hex digest of a password, the value carried by tokens"""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def create_key() -> str:
    """Random 256-bit key, hex encoded"""
    return secrets.token_hex(KEY_LENGTH)


@lru_cache(maxsize=1024)
def stretch_key(secret: bytes, salt: bytes, iterations: int) -> bytes:
    """PBKDF2-HMAC-SHA256 with a 32 byte output"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


class CipherEngine:
    """
    Derives per-user keys from the master key and encrypts opaque payloads

    The master key is absent until the admin bootstrap unlocks the service.
    """

    def __init__(self, iv: bytes, iterations: int = 100000, random_nonce: bool = True):
        if len(iv) != 16:
            raise ValueError("IV must be 16 bytes")
        self.iv = iv
        self.iterations = iterations
        self.random_nonce = random_nonce
        self._master_key: Optional[bytes] = None

    @property
    def master_key(self) -> bytes:
        if self._master_key is None:
            raise ServiceNotReady()
        return self._master_key

    def set_master_key(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError("Master key must be 32 bytes")
        self._master_key = key

    @property
    def has_master_key(self) -> bool:
        return self._master_key is not None

    def derive_user_key(self, hashed_password: Optional[str] = None) -> bytes:
        """
        Key for a user's data

        Without a password hash this is the raw master key, used for the
        password-independent layer (tokens).
        """
        master_key = self.master_key
        if not hashed_password:
            return master_key
        return stretch_key(hashed_password.encode("utf-8"), master_key, self.iterations)

    # ------------------------------------------------------------------
    # Bytes
    # ------------------------------------------------------------------

    def encrypt(self, data: bytes, key: bytes) -> bytes:
        if self.random_nonce:
            nonce = os.urandom(NONCE_LENGTH)
            return V2_HEADER + nonce + AESGCM(key).encrypt(nonce, data, None)
        return self._encrypt_legacy(data, key)

    def decrypt(self, data: bytes, key: bytes) -> Optional[bytes]:
        """Plaintext, or None when the data is corrupt or the key is wrong"""
        if not data:
            return None

        # A legacy ciphertext starts with the header with probability 2**-24;
        # such files are unreadable rather than silently misdecoded.
        if data.startswith(V2_HEADER):
            body = data[len(V2_HEADER):]
            if len(body) <= NONCE_LENGTH:
                return None
            try:
                return AESGCM(key).decrypt(body[:NONCE_LENGTH], body[NONCE_LENGTH:], None)
            except (InvalidTag, ValueError):
                return None

        return self._decrypt_legacy(data, key)

    def _encrypt_legacy(self, data: bytes, key: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(self.iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt_legacy(self, data: bytes, key: bytes) -> Optional[bytes]:
        if len(data) % 16:
            return None
        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(self.iv)).decryptor()
            padded = decryptor.update(data) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def encrypt_json(self, value: Any, key: bytes) -> bytes:
        return self.encrypt(json.dumps(value).encode("utf-8"), key)

    def decrypt_json(self, data: bytes, key: bytes) -> Any:
        """Decoded value, or DECRYPT_FAILED"""
        plaintext = self.decrypt(data, key)
        if plaintext is None:
            return DECRYPT_FAILED
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return DECRYPT_FAILED

    # ------------------------------------------------------------------
    # Files
    #
    # A key of None stores plaintext. Only plain accounts (fixtures and
    # demos) are given a None key, see Settings.is_plain_account.
    # ------------------------------------------------------------------

    def write_encrypted(self, path: Path, data: bytes, key: Optional[bytes]) -> None:
        payload = data if key is None else self.encrypt(data, key)
        Path(path).write_bytes(payload)

    def read_encrypted(self, path: Path, key: Optional[bytes]) -> Optional[bytes]:
        """Plaintext bytes; None if the file does not decrypt"""
        data = Path(path).read_bytes()
        if key is None:
            return data
        return self.decrypt(data, key)

    def write_json(self, path: Path, value: Any, key: Optional[bytes]) -> None:
        self.write_encrypted(path, json.dumps(value).encode("utf-8"), key)

    def read_json(self, path: Path, key: Optional[bytes]) -> Any:
        data = Path(path).read_bytes()
        if key is not None:
            return self.decrypt_json(data, key)
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return DECRYPT_FAILED
