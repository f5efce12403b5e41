"""
signature.py — X-Line-Signature verification.

signature = base64(HMAC-SHA256(channel_secret, raw_request_body))
Compared in constant time.
"""
import base64
import hashlib
import hmac
from typing import Optional


class InvalidSignatureError(Exception):
    pass


def compute_signature(channel_secret: str, body: bytes) -> str:
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(channel_secret: str, body: bytes, signature: Optional[str]) -> None:
    if not signature:
        raise InvalidSignatureError("Missing X-Line-Signature header")
    expected = compute_signature(channel_secret, body)
    if not hmac.compare_digest(expected, signature):
        raise InvalidSignatureError("X-Line-Signature does not match request body")
