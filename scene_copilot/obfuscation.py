"""Reversible credential obfuscation for the settings file.

This is NOT encryption.  It XORs the UTF-8 bytes of the key with a
fixed string and hex-encodes the result so the raw key does not sit in
plain sight in ``settings.yaml``.  Anyone with this source can reverse
it.  Real secret storage is out of scope for the copilot core.
"""

import logging

logger = logging.getLogger(__name__)

OBFUSCATION_KEY = "SceneCopilot2024"


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def obfuscate(plain_text: str, key: str = OBFUSCATION_KEY) -> str:
    if not plain_text:
        return ""
    return _xor(plain_text.encode("utf-8"), key.encode("utf-8")).hex()


def deobfuscate(obfuscated: str, key: str = OBFUSCATION_KEY) -> str:
    """Reverse :func:`obfuscate`.  Returns ``""`` for malformed input."""
    if not obfuscated:
        return ""
    try:
        raw = bytes.fromhex(obfuscated.strip())
        return _xor(raw, key.encode("utf-8")).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        logger.warning("Stored credential is not valid obfuscated text, ignoring it")
        return ""
