from __future__ import annotations

import base64
import hashlib
import re
import time
from typing import Optional

import pyotp

from ..errors import InvalidSecretError


TIME_STEP_SECONDS = 30
DIGITS = 6

_BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_CODE_RE = re.compile(r"[0-9]{6}")


def is_precomputed_code(value: str) -> bool:
    return bool(_CODE_RE.fullmatch((value or "").strip()))


def decode_secret(secret: str) -> bytes:
    """
    Lenient base32 decode: uppercase, drop anything outside A-Z2-7 (spaces, dashes, '=' padding)
    and discard trailing bits that do not fill a whole byte.

    Authenticator apps display secrets in groups ("abcd efgh ...") and some portals omit padding,
    both of which `base64.b32decode` rejects.
    """
    bits = 0
    n_bits = 0
    out = bytearray()
    for ch in (secret or "").upper():
        idx = _BASE32_ALPHABET.find(ch)
        if idx < 0:
            continue
        bits = (bits << 5) | idx
        n_bits += 5
        if n_bits >= 8:
            n_bits -= 8
            out.append((bits >> n_bits) & 0xFF)
    if not out:
        raise InvalidSecretError("TOTP secret decoded to zero bytes (not a base32 secret?)")
    return bytes(out)


def generate(secret: str, now: Optional[float] = None) -> str:
    """
    Current RFC 6238 code (30s step, 6 digits, HMAC-SHA1) for `secret`.

    Call this right before typing the code; a value computed earlier in the flow can cross a
    step boundary while the login UI is loading.
    """
    key = decode_secret(secret)
    ts = time.time() if now is None else now
    counter = int(ts // TIME_STEP_SECONDS)
    # pyotp wants a canonical base32 secret; re-encode the leniently decoded key.
    otp = pyotp.TOTP(
        base64.b32encode(key).decode("ascii"),
        digits=DIGITS,
        digest=hashlib.sha1,
        interval=TIME_STEP_SECONDS,
    )
    return otp.generate_otp(counter)


def mask_code(code: str) -> str:
    return f"{code[:2]}****{code[-2:]}" if len(code) >= 4 else "***"
