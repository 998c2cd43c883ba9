"""XXTEA (corrected block TEA) over base64 payloads.

Byte layout follows the widely deployed JavaScript ``xxtea`` library:
data is packed little-endian into 32-bit words with the plaintext length
appended as a trailing word, the key is UTF-8 encoded and only its first
16 bytes are used (shorter keys are zero padded).
"""

from __future__ import annotations

import base64
import binascii
import struct

from signalrelay.domain.exceptions import DecryptError

_DELTA = 0x9E3779B9
_MASK = 0xFFFFFFFF


def _to_words(data: bytes, include_length: bool) -> list[int]:
    n = len(data)
    padded = data + b"\0" * (-n % 4)
    words = list(struct.unpack(f"<{len(padded) // 4}I", padded))
    if include_length:
        words.append(n)
    return words


def _to_bytes(words: list[int], include_length: bool) -> bytes:
    raw = struct.pack(f"<{len(words)}I", *words)
    if not include_length:
        return raw
    n = (len(words) - 1) * 4
    m = words[-1]
    if m < n - 3 or m > n:
        raise DecryptError("length word out of range")
    return raw[:m]


def _key_words(key: str | bytes) -> list[int]:
    raw = key.encode("utf-8") if isinstance(key, str) else key
    raw = raw[:16].ljust(16, b"\0")
    return list(struct.unpack("<4I", raw))


def _mx(total: int, y: int, z: int, p: int, e: int, k: list[int]) -> int:
    return (
        (((z >> 5) ^ (y << 2)) + ((y >> 3) ^ (z << 4)))
        ^ ((total ^ y) + (k[(p & 3) ^ e] ^ z))
    ) & _MASK


def _encrypt_words(v: list[int], k: list[int]) -> list[int]:
    n = len(v) - 1
    if n < 1:
        return v
    z = v[n]
    total = 0
    rounds = 6 + 52 // (n + 1)
    for _ in range(rounds):
        total = (total + _DELTA) & _MASK
        e = (total >> 2) & 3
        for p in range(n):
            y = v[p + 1]
            v[p] = (v[p] + _mx(total, y, z, p, e, k)) & _MASK
            z = v[p]
        y = v[0]
        v[n] = (v[n] + _mx(total, y, z, n, e, k)) & _MASK
        z = v[n]
    return v


def _decrypt_words(v: list[int], k: list[int]) -> list[int]:
    n = len(v) - 1
    if n < 1:
        return v
    y = v[0]
    rounds = 6 + 52 // (n + 1)
    total = (rounds * _DELTA) & _MASK
    while total:
        e = (total >> 2) & 3
        for p in range(n, 0, -1):
            z = v[p - 1]
            v[p] = (v[p] - _mx(total, y, z, p, e, k)) & _MASK
            y = v[p]
        z = v[n]
        v[0] = (v[0] - _mx(total, y, z, 0, e, k)) & _MASK
        y = v[0]
        total = (total - _DELTA) & _MASK
    return v


def encrypt(data: bytes, key: str | bytes) -> bytes:
    if not data:
        return b""
    words = _encrypt_words(_to_words(data, True), _key_words(key))
    return _to_bytes(words, False)


def decrypt(data: bytes, key: str | bytes) -> bytes:
    """Decrypt *data*; raises ``DecryptError`` on malformed ciphertext."""
    if not data:
        return b""
    if len(data) % 4 or len(data) < 8:
        raise DecryptError(f"ciphertext length {len(data)} is not a word multiple")
    words = _decrypt_words(_to_words(data, False), _key_words(key))
    return _to_bytes(words, True)


def encrypt_to_base64(text: str, key: str | bytes) -> str:
    return base64.b64encode(encrypt(text.encode("utf-8"), key)).decode("ascii")


def decrypt_from_base64(payload: str, key: str | bytes) -> str:
    """Base64-decode, decrypt and UTF-8 decode *payload*.

    Raises ``DecryptError`` for every failure mode.
    """
    try:
        raw = base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError) as e:
        raise DecryptError(f"invalid base64 payload: {e}") from e
    plain = decrypt(raw, key)
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptError("plaintext is not valid UTF-8") from e
