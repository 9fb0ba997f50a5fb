"""HMAC signing of outbound bodies and verification of inbound callbacks."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Signature"


def sign_body(secret: str, body: bytes) -> str:
    """Hex-encoded HMAC-SHA256 over the exact serialized body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time comparison via hmac.compare_digest."""
    if not signature:
        return False
    return hmac.compare_digest(signature.encode(), sign_body(secret, body).encode())


def build_headers(
    body: bytes,
    auth_token: str | None = None,
    signing_secret: str | None = None,
) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if auth_token:
        headers["Authorization"] = f"Bearer {auth_token}"
    if signing_secret:
        headers[SIGNATURE_HEADER] = sign_body(signing_secret, body)
    return headers
