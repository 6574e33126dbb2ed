"""
crypto.py - Template Encryption & Device Keys

Provides:
  - SHA-256 hashing (one-way pattern digests)
  - AES-256-GCM authenticated encryption / decryption
  - Secure key derivation (PBKDF2)
  - Credential stores handing out the per-device template key
"""

import os
import base64
import hashlib
import logging
from typing import Optional, Tuple

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives import hashes

from heartid_common.errors import IOFailure
from heartid_common.utils import ensure_dir

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────
KEY_LEN      = 32          # 256 bits for AES-256
NONCE_LEN    = 12          # 96 bits (NIST recommended for GCM)
SALT_LEN     = 16          # 128-bit salt for PBKDF2
PBKDF2_ITER  = 100_000     # iterations (OWASP minimum)


# ─────────────────────────────────────────────
# KEY DERIVATION
# ─────────────────────────────────────────────
def derive_key(passphrase: bytes, salt: bytes = None) -> Tuple[bytes, bytes]:
    """
    Derive a 256-bit AES key from a passphrase using PBKDF2-HMAC-SHA256.

    Returns (key_bytes, salt_bytes). If salt is None, a fresh random salt
    is generated. Pass an existing salt to reproduce the same key.
    """
    if salt is None:
        salt = os.urandom(SALT_LEN)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=salt,
        iterations=PBKDF2_ITER,
    )
    key = kdf.derive(passphrase)
    return key, salt


# ─────────────────────────────────────────────
# SHA-256 HASHING
# ─────────────────────────────────────────────
def sha256_hash(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of *data*."""
    digest = hashlib.sha256(data).hexdigest()
    logger.debug(f"SHA-256: {digest[:16]}…")
    return digest


# ─────────────────────────────────────────────
# AES-256-GCM ENCRYPTION / DECRYPTION
# ─────────────────────────────────────────────
def aes_encrypt(plaintext: bytes, key: bytes, associated_data: Optional[bytes] = None) -> dict:
    """
    Encrypt *plaintext* with AES-256-GCM.

    Returns a JSON-serialisable dict:
      {
        "ciphertext": <base64>,   # GCM tag appended by the cryptography library
        "nonce":      <base64>,
      }
    *associated_data* is authenticated but not encrypted; the same bytes
    must be supplied to aes_decrypt().
    """
    nonce = os.urandom(NONCE_LEN)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
    return {
        "ciphertext": base64.b64encode(ciphertext).decode(),
        "nonce": base64.b64encode(nonce).decode(),
    }


def aes_decrypt(encrypted: dict, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """
    Decrypt an *encrypted* dict produced by aes_encrypt().
    Raises cryptography.exceptions.InvalidTag if the GCM tag check fails.
    """
    nonce = base64.b64decode(encrypted["nonce"], validate=True)
    ciphertext = base64.b64decode(encrypted["ciphertext"], validate=True)
    return AESGCM(key).decrypt(nonce, ciphertext, associated_data)


# ─────────────────────────────────────────────
# CREDENTIAL STORES
# ─────────────────────────────────────────────
def _write_private(path: str, data: bytes):
    """Create *path* with owner-only permissions; fails if it already exists."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


class FileCredentialStore:
    """
    Keeps a random 256-bit device key in a private file. The key is created
    on first use and never leaves this object except to the template store.
    """

    def __init__(self, path: str):
        self.path = path

    def get_or_create_device_key(self) -> bytes:
        try:
            if not os.path.exists(self.path):
                ensure_dir(os.path.dirname(self.path) or ".")
                try:
                    _write_private(self.path, AESGCM.generate_key(bit_length=256))
                    logger.info(f"Generated new device key at {self.path}")
                except FileExistsError:
                    pass
            with open(self.path, "rb") as f:
                key = f.read()
        except OSError as e:
            raise IOFailure(f"Device key unavailable: {e}") from e
        if len(key) != KEY_LEN:
            raise IOFailure(f"Device key at {self.path} has unexpected length {len(key)}")
        return key


class PassphraseCredentialStore:
    """
    Derives the device key from a passphrase (PBKDF2) with a salt persisted
    next to the template. Losing the salt file makes old templates unreadable.
    """

    def __init__(self, passphrase: bytes, salt_path: str):
        self.passphrase = passphrase
        self.salt_path = salt_path
        self._key = None

    def get_or_create_device_key(self) -> bytes:
        if self._key is not None:
            return self._key
        try:
            if os.path.exists(self.salt_path):
                with open(self.salt_path, "rb") as f:
                    salt = f.read()
                key, _ = derive_key(self.passphrase, salt)
            else:
                ensure_dir(os.path.dirname(self.salt_path) or ".")
                key, salt = derive_key(self.passphrase)
                _write_private(self.salt_path, salt)
                logger.info(f"Generated new key-derivation salt at {self.salt_path}")
        except OSError as e:
            raise IOFailure(f"Key-derivation salt unavailable: {e}") from e
        self._key = key
        return key
