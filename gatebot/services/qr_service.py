"""
QR token codec for the TradeConnect gate.

Generates access tokens, derives the keyed hash that is actually stored, and
renders tickets as QR images. Uses `segno` — a pure-Python QR encoder (no
native libs required).

Token anatomy
-------------
token      = sha256(32 random bytes | registration id | time_ns)   → shown once
token_hash = hmac_sha256(QR_TOKEN_PEPPER, token)                   → stored
"""
from __future__ import annotations

import hashlib
import hmac
import io
import re
import secrets
import time
from typing import Optional

import segno

from gatebot.config import settings

TOKEN_LENGTH = 64

_TOKEN_RE      = re.compile(r"^[0-9a-f]{64}$")
_TOKEN_FIND_RE = re.compile(r"\b[0-9a-fA-F]{64}\b")


def make_qr_token(registration_id: int) -> str:
    """Generate a fresh 256-bit token for a registration (64 lowercase hex chars)."""
    material = b"|".join([
        secrets.token_bytes(32),
        str(registration_id).encode("ascii"),
        str(time.time_ns()).encode("ascii"),
    ])
    return hashlib.sha256(material).hexdigest()


def hash_token(token: str, pepper: Optional[str] = None) -> str:
    """Keyed one-way hash of a presented token — the value stored and looked up."""
    key = (pepper if pepper is not None else settings.QR_TOKEN_PEPPER).encode("utf-8")
    return hmac.new(key, token.encode("ascii"), hashlib.sha256).hexdigest()


def normalize_token(raw: str) -> str:
    """Scanners sometimes add whitespace or upper-case the payload."""
    return raw.strip().lower()


def validate_token_format(token: str) -> bool:
    """Check that the string is exactly 64 lowercase hex characters."""
    return isinstance(token, str) and bool(_TOKEN_RE.match(token))


def extract_token(text: str) -> Optional[str]:
    """Pull a token out of free text (e.g. a pasted scanner result)."""
    match = _TOKEN_FIND_RE.search(text or "")
    return match.group(0).lower() if match else None


def generate_qr_png(token: str, scale: int = 10, border: int = 2) -> bytes:
    """
    Render a QR code for the given token as a PNG image.

    Parameters
    ----------
    token  : the 64-char token to encode
    scale  : pixels per module (default 10)
    border : quiet-zone width in modules

    Returns
    -------
    PNG bytes ready to be sent as a Telegram photo.
    """
    return generate_qr_buffered(token, scale=scale, border=border).read()


def generate_qr_buffered(token: str, scale: int = 10, border: int = 2) -> io.BytesIO:
    """
    Same as generate_qr_png but returns a seeked BytesIO buffer.
    Useful for aiogram's BufferedInputFile.
    """
    qr  = segno.make_qr(token, error="H")
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=scale, border=border)
    buf.seek(0)
    return buf
