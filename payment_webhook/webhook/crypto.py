"""Payload encryption and integrity hash for the upstream partner API.

The partner decrypts with AES-256-CBC using the first 16 bytes of the shared
key as IV. Reusing a fixed IV means identical plaintexts produce identical
ciphertexts; this is an interoperability constraint of the partner contract,
not a recommendation. Switching to a random IV would break upstream decryption.
"""

from __future__ import annotations

import base64
import hashlib
import math
from collections.abc import Iterable
from decimal import Decimal

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

KEY_SIZE = 32
IV_SIZE = 16


class InvalidKeyError(ValueError):
    """Raised when the AES key is not exactly 32 bytes of UTF-8."""


def ensure_key_32_bytes(key: str) -> bytes:
    key_bytes = key.encode("utf-8")
    if len(key_bytes) != KEY_SIZE:
        raise InvalidKeyError(
            f"PL_AES_KEY must be {KEY_SIZE} bytes for AES-256-CBC, got {len(key_bytes)}"
        )
    return key_bytes


def _cipher(key: str) -> Cipher:
    key_bytes = ensure_key_32_bytes(key)
    return Cipher(algorithms.AES(key_bytes), modes.CBC(key_bytes[:IV_SIZE]))


def aes_encrypt_base64(plaintext: str, key: str) -> str:
    """Encrypt UTF-8 text and return standard (padded) base64."""
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = _cipher(key).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii")


def aes_decrypt_base64(ciphertext: str, key: str) -> str:
    decryptor = _cipher(key).decryptor()
    padded = decryptor.update(base64.b64decode(ciphertext)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


def js_number(value: int | float) -> str:
    """Format a number the way JavaScript's String(number) does.

    Uses the shortest round-trip digits (Python's repr) laid out with the
    ECMAScript rules: magnitudes from 1e-6 up to (not including) 1e21 are
    written out in full, anything else as ``1e-7`` or ``1.5e+21``.
    """
    if isinstance(value, int):
        if abs(value) < 10**21:
            return str(value)
        value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    parts = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in parts.digits)
    k = len(digits)
    n = k + parts.exponent  # value = 0.digits * 10**n

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


def js_string(value: object) -> str:
    """Render a value the way the partner's reference hashing code stringifies it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return js_number(value)
    return str(value)


def compute_hash(
    client_id: str,
    client_secret: str,
    fields: Iterable[tuple[str, object]],
) -> str:
    """SHA-512 hex digest of ``client_id|v1|...|vN|client_secret``.

    Values are joined without escaping, so a value containing ``|`` can
    collide with a different field split. The partner computes it the same way.
    """
    parts = [client_id, *(js_string(value) for _, value in fields), client_secret]
    return hashlib.sha512("|".join(parts).encode("utf-8")).hexdigest()
