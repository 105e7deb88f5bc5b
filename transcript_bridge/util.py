"""
Utility functions for transcript_bridge.

Provides base64, hashing, thumbprint and time helpers.
"""

import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional, Union


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """
    Strict base64 decode.

    Raises:
        ValueError: If the input is not valid base64
    """
    try:
        return base64.b64decode(s.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def sha1_thumbprint(der: bytes) -> str:
    """SHA-1 thumbprint of a DER-encoded certificate, uppercase hex."""
    return hashlib.sha1(der).hexdigest().upper()


def normalize_thumbprint(value: Optional[str]) -> str:
    """Uppercase hex with separators and whitespace removed."""
    if not value:
        return ""
    return "".join(ch for ch in value if ch not in " :-\t").upper()


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha256).digest()


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_iso(dt: Optional[datetime] = None) -> str:
    """RFC3339 UTC string, second precision."""
    dt = dt or utc_now()
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse the ISO timestamps Graph sends (fractional seconds, trailing Z).
    Returns None for missing or unparseable values.
    """
    if not value:
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    # fromisoformat only accepts up to 6 fractional digits
    if "." in s:
        head, _, tail = s.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if ch.isdigit():
                digits += ch
            else:
                rest = tail[i:]
                break
        s = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
