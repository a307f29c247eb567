import base64
import os
import stat
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lumen.crypto.cipher import SecretCipher, load_or_create_key
from lumen.errors import ConfigurationError, DecryptionError


def test_round_trip_uses_fresh_nonce(cipher: SecretCipher) -> None:
    first = cipher.encrypt("refresh-token")
    second = cipher.encrypt("refresh-token")

    assert first != second
    assert cipher.decrypt(first) == "refresh-token"
    assert cipher.decrypt(second) == "refresh-token"
    assert len(base64.b64decode(first)) == 12 + len("refresh-token") + 16


def test_tampered_ciphertext_is_rejected(cipher: SecretCipher) -> None:
    blob = bytearray(base64.b64decode(cipher.encrypt("secret")))
    blob[-1] ^= 0x01

    with pytest.raises(DecryptionError):
        cipher.decrypt(base64.b64encode(bytes(blob)).decode())


def test_wrong_key_is_rejected(cipher: SecretCipher) -> None:
    other = SecretCipher(key=b"\xff" * 32)

    with pytest.raises(DecryptionError):
        other.decrypt(cipher.encrypt("secret"))


@pytest.mark.parametrize(
    "secret",
    [
        "not base64!!",
        base64.b64encode(b"short").decode(),
        base64.b64encode(b"\x00" * 27).decode(),
        "",
    ],
)
def test_malformed_secrets_are_rejected(cipher: SecretCipher, secret: str) -> None:
    with pytest.raises(DecryptionError):
        cipher.decrypt(secret)


def test_non_utf8_plaintext_is_rejected() -> None:
    key = b"\x07" * 32
    nonce = os.urandom(12)
    blob = nonce + AESGCM(key).encrypt(nonce, b"\xff\xfe\xfd", None)

    with pytest.raises(DecryptionError):
        SecretCipher(key=key).decrypt(base64.b64encode(blob).decode())


def test_key_file_is_created_once_and_reused(tmp_path: Path) -> None:
    key_path = tmp_path / "nested" / ".key"

    secret = SecretCipher(key_path).encrypt("value")

    assert key_path.exists()
    assert len(key_path.read_bytes()) == 32
    assert stat.S_IMODE(key_path.stat().st_mode) == 0o600
    assert SecretCipher(key_path).decrypt(secret) == "value"
    assert load_or_create_key(key_path) == key_path.read_bytes()


def test_key_file_with_wrong_length_is_a_configuration_error(tmp_path: Path) -> None:
    key_path = tmp_path / ".key"
    key_path.write_bytes(b"too short")

    with pytest.raises(ConfigurationError):
        SecretCipher(key_path).encrypt("value")


def test_cipher_requires_a_key_source() -> None:
    with pytest.raises(ValueError):
        SecretCipher()
