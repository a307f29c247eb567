"""Secret-at-rest encryption."""

from lumen.crypto.cipher import SecretCipher, load_or_create_key

__all__ = ["SecretCipher", "load_or_create_key"]
