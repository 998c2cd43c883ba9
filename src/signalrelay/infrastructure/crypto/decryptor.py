"""Recover ``{url, ts}`` from the cipher marker embedded in player pages.

Player pages ship the real media URL as ``encodedStr = '<base64>'``:
an XXTEA ciphertext (static key) of a small JSON document.
"""

from __future__ import annotations

import json
import re

import structlog

from signalrelay.domain.entities import SignalPayload
from signalrelay.domain.exceptions import DecryptError
from signalrelay.infrastructure.crypto import xxtea

log = structlog.get_logger(__name__)

DEFAULT_CIPHER_KEY = "ABCDEFGHIJKLMNOPQRSTUVWX"

CIPHER_MARKER = "encodedStr"

_MARKER_RE = re.compile(r"""encodedStr\s*=\s*(["'])(.*?)\1""", re.DOTALL)


def find_cipher_payload(html: str) -> str | None:
    """Return the quoted value assigned to the first cipher marker."""
    if CIPHER_MARKER not in html:
        return None
    m = _MARKER_RE.search(html)
    if not m:
        return None
    value = m.group(2).strip()
    return value or None


def _parse_plaintext(plaintext: str) -> SignalPayload:
    try:
        doc = json.loads(plaintext)
    except json.JSONDecodeError as e:
        raise DecryptError(f"plaintext is not JSON: {e}") from e
    if not isinstance(doc, dict) or not isinstance(doc.get("url"), str) or not doc["url"]:
        raise DecryptError("plaintext has no url")
    return SignalPayload(url=doc["url"], ts=doc.get("ts"))


def decrypt_payload(
    payload: str, key: str = DEFAULT_CIPHER_KEY
) -> SignalPayload | None:
    """Decrypt a base64 cipher payload; ``None`` on any failure."""
    if not payload:
        return None
    try:
        return _parse_plaintext(xxtea.decrypt_from_base64(payload, key))
    except DecryptError as e:
        log.debug("cipher_payload_rejected", error=str(e), size=len(payload))
        return None


def encrypt_payload(payload: SignalPayload, key: str = DEFAULT_CIPHER_KEY) -> str:
    """Inverse of :func:`decrypt_payload` (fixtures, tooling)."""
    doc: dict[str, object] = {"url": payload.url}
    if payload.ts is not None:
        doc["ts"] = payload.ts
    return xxtea.encrypt_to_base64(
        json.dumps(doc, ensure_ascii=False, separators=(",", ":")), key
    )
