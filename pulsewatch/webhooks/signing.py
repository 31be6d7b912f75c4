"""HMAC-SHA256 request signing for outbound webhooks."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"
_PREFIX = "sha256="


def sign(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature of *body* under *secret*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{_PREFIX}{digest}"


def verify(body: bytes, secret: str, signature: str) -> bool:
    """Check *signature* against *body* in constant time."""
    return hmac.compare_digest(sign(body, secret), signature)
