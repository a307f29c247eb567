"""AES-256-GCM encryption for secrets kept at rest."""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from lumen.errors import ConfigurationError, DecryptionError

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def load_or_create_key(key_path: Path) -> bytes:
    """Load the installation key, generating it on first use.

    The key is written to a sibling temp file and moved into place, so two
    processes racing on first run both end up with a complete key file and the
    last rename wins.
    """
    if key_path.exists():
        key = key_path.read_bytes()
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"invalid encryption key length in {key_path}")
        return key

    key = AESGCM.generate_key(bit_length=KEY_LENGTH * 8)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=key_path.parent, prefix=".key-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(key)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, key_path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.info("crypto.key.created path={}", key_path)
    return key


class SecretCipher:
    """Encrypts small secrets as base64(nonce || ciphertext || tag)."""

    def __init__(self, key_path: Path | None = None, *, key: bytes | None = None) -> None:
        if key_path is None and key is None:
            raise ValueError("either key_path or key is required")
        if key is not None and len(key) != KEY_LENGTH:
            raise ConfigurationError("encryption key must be 32 bytes")
        self._key_path = key_path
        self._aesgcm = AESGCM(key) if key is not None else None

    def _cipher(self) -> AESGCM:
        if self._aesgcm is None:
            assert self._key_path is not None
            self._aesgcm = AESGCM(load_or_create_key(self._key_path))
        return self._aesgcm

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, secret: str) -> str:
        try:
            combined = base64.b64decode(secret.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise DecryptionError("encrypted secret is not valid base64") from exc

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("encrypted secret is too short")

        nonce, ciphertext = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        try:
            plaintext = self._cipher().decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("encrypted secret failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("decrypted secret is not valid UTF-8") from exc
