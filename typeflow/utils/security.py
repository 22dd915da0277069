import base64
import binascii
from typing import Any, Dict

from typeflow.config import settings

# Credential config keys that are stored encrypted
SENSITIVE_FIELDS = ("password", "connectionString", "apiKey", "token", "secret")


def _get_key_bytes() -> bytes:
    return settings.SECRET_KEY.encode()


def encrypt_string(raw: str) -> str:
    """
    Encrypts a string with an XOR cipher keyed by SECRET_KEY.
    This is obfuscation at rest, not strong encryption.
    """
    if not raw:
        return raw
    key = _get_key_bytes()
    raw_bytes = raw.encode()
    encrypted = bytearray(b ^ key[i % len(key)] for i, b in enumerate(raw_bytes))
    return base64.b64encode(encrypted).decode()


def decrypt_string(enc: str) -> str:
    """Decrypts a string produced by encrypt_string; values that were never encrypted come back unchanged."""
    if not enc:
        return enc
    key = _get_key_bytes()
    try:
        enc_bytes = base64.b64decode(enc, validate=True)
        return bytes(b ^ key[i % len(key)] for i, b in enumerate(enc_bytes)).decode()
    except (binascii.Error, UnicodeDecodeError):
        return enc


def encrypt_config(config: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(config)
    for field in SENSITIVE_FIELDS:
        if isinstance(result.get(field), str):
            result[field] = encrypt_string(result[field])
    return result


def decrypt_config(config: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(config)
    for field in SENSITIVE_FIELDS:
        if isinstance(result.get(field), str):
            result[field] = decrypt_string(result[field])
    return result
