"""
store.py - Encrypted Template Store

Owns the single enrolled UserProfile of a device. The profile is serialised
to JSON, encrypted with AES-256-GCM under the device key, and written as a
small JSON envelope:

    {"format": "heartid-template", "version": <feature version>,
     "nonce": <base64>, "ciphertext": <base64>}

The version travels in clear so that load() can refuse unknown layouts
before decrypting, and it is bound to the ciphertext as associated data.
"""

import os
import json
import binascii
import logging
import tempfile
import threading

from cryptography.exceptions import InvalidTag

from heartid_common.errors import NotFound, Corrupted, UnsupportedVersion, IOFailure
from heartid_common.models import UserProfile
from heartid_common.utils import ensure_dir
from heartid_engine.crypto import aes_encrypt, aes_decrypt
from heartid_engine.features import FEATURE_VERSION

logger = logging.getLogger(__name__)

RECORD_FORMAT = "heartid-template"
SUPPORTED_VERSIONS = frozenset({FEATURE_VERSION})


def _associated_data(version: int) -> bytes:
    return f"{RECORD_FORMAT}:v{version}".encode()


class TemplateStore:
    """
    Single-profile encrypted store. Reads and writes are serialised by an
    instance lock; writes are atomic (temp file + fsync + rename).
    """

    def __init__(self, path: str, credential_store):
        self.path = path
        self.credentials = credential_store
        self._lock = threading.RLock()
        self._cached = None         # (raw record bytes, UserProfile)

    # ─── internal ────────────────────────────────────────────────────────────

    def _write_atomic(self, data: bytes):
        directory = os.path.dirname(self.path) or "."
        ensure_dir(directory)
        fd, tmp_path = tempfile.mkstemp(prefix=".template-", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _decode(self, raw: bytes) -> UserProfile:
        try:
            envelope = json.loads(raw.decode("utf-8"))
            if not isinstance(envelope, dict) or envelope.get("format") != RECORD_FORMAT:
                raise Corrupted("Template record has an unknown envelope")
            version = envelope["version"]
        except (UnicodeDecodeError, ValueError, KeyError) as e:
            raise Corrupted(f"Template record is malformed: {e}") from e

        if not isinstance(version, (int, str)) or isinstance(version, bool):
            raise Corrupted(f"Template record has an invalid version field: {version!r}")
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(version)

        key = self.credentials.get_or_create_device_key()
        try:
            plaintext = aes_decrypt(envelope, key, _associated_data(version))
        except InvalidTag as e:
            raise Corrupted("Template integrity check failed") from e
        except (KeyError, TypeError, binascii.Error, ValueError) as e:
            raise Corrupted(f"Template record is malformed: {e}") from e

        try:
            profile = UserProfile.from_dict(json.loads(plaintext.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise Corrupted(f"Decrypted template is malformed: {e}") from e

        if profile.template.feature_vector.version != version:
            raise Corrupted("Template version does not match its envelope")
        return profile

    # ─── public API ──────────────────────────────────────────────────────────

    def save(self, profile: UserProfile):
        """Encrypt and persist *profile*, replacing any previous one."""
        version = profile.template.feature_vector.version
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(version)

        with self._lock:
            key = self.credentials.get_or_create_device_key()
            plaintext = json.dumps(profile.to_dict()).encode("utf-8")
            envelope = {"format": RECORD_FORMAT, "version": version}
            envelope.update(aes_encrypt(plaintext, key, _associated_data(version)))
            raw = json.dumps(envelope).encode("utf-8")
            try:
                self._write_atomic(raw)
                self._cached = (raw, profile)
            except OSError as e:
                self._cached = None
                raise IOFailure(f"Could not write template: {e}") from e
        logger.info(f"Template saved (v{version}, {len(plaintext)} bytes plaintext)")

    def load(self) -> UserProfile:
        """
        Return the enrolled profile.

        Raises NotFound, Corrupted, UnsupportedVersion or IOFailure.
        """
        with self._lock:
            try:
                with open(self.path, "rb") as f:
                    raw = f.read()
            except FileNotFoundError:
                self._cached = None
                raise NotFound("No enrolled profile on this device") from None
            except OSError as e:
                raise IOFailure(f"Could not read template: {e}") from e

            # Decryption is skipped only for a byte-identical record.
            if self._cached is not None and self._cached[0] == raw:
                return self._cached[1]

            try:
                profile = self._decode(raw)
            except (Corrupted, UnsupportedVersion):
                self._cached = None
                logger.error("Stored template rejected - re-enrollment required")
                raise
            self._cached = (raw, profile)
            return profile

    def exists(self) -> bool:
        with self._lock:
            return os.path.exists(self.path)

    def clear(self):
        """Delete the encrypted record and the in-memory copy."""
        with self._lock:
            self._cached = None
            try:
                os.unlink(self.path)
                logger.info("Template deleted")
            except FileNotFoundError:
                pass
            except OSError as e:
                raise IOFailure(f"Could not delete template: {e}") from e
