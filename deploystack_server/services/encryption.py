"""Symmetric encryption for secret global settings.

Uses Fernet from the cryptography package. The key is derived with scrypt
from ``DEPLOYSTACK_ENCRYPTION_SECRET`` when set; otherwise a random key is
generated once and kept in ``<data_dir>/encryption.key``.
"""
import base64
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_log = logging.getLogger(__name__)

KEY_FILE_NAME = 'encryption.key'
_KDF_SALT = b'deploystack-global-settings-salt'


def derive_key(secret: str) -> bytes:
    kdf = Scrypt(salt=_KDF_SALT, length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode('utf-8')))


def load_or_create_key_file(path: Path) -> bytes:
    path = Path(path)
    if path.exists():
        return path.read_bytes().strip()
    path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(key)
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:  # pragma: no cover - platform dependent
        _log.debug("could not restrict permissions on %s", path)
    _log.info("generated new settings encryption key at %s", path)
    return key


class EncryptionService:
    """Encrypt/decrypt strings with a single Fernet key."""

    def __init__(self, key: Optional[bytes] = None):
        if key is None:
            key = Fernet.generate_key()
        self.fernet = Fernet(key)

    @classmethod
    def from_settings(cls, secret: Optional[str], data_dir: Path) -> 'EncryptionService':
        if secret:
            return cls(derive_key(secret))
        return cls(load_or_create_key_file(Path(data_dir) / KEY_FILE_NAME))

    def encrypt(self, plaintext: str) -> str:
        return self.fernet.encrypt(plaintext.encode('utf-8')).decode('utf-8')

    def decrypt(self, ciphertext: str) -> str:
        """Raises ``cryptography.fernet.InvalidToken`` when the value cannot be decrypted."""
        return self.fernet.decrypt(ciphertext.encode('utf-8')).decode('utf-8')

    def validate(self) -> bool:
        probe = 'encryption-self-test'
        try:
            return self.decrypt(self.encrypt(probe)) == probe
        except InvalidToken:
            return False
