"""Opaque, tamper-evident continuation tokens for paginated history reads."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass

from pulsewatch.query.exceptions import InvalidContinuationTokenError

_TAG_BYTES = 16
_DESCENDING = "desc"


@dataclass(frozen=True)
class ContinuationToken:
    """Cursor to the last range returned: *key* is that range's oldest item id."""

    target_id: str
    key: str
    direction: str = _DESCENDING


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class ContinuationTokenCodec:
    """Encodes cursors as ``<body>.<tag>``, both base64url without padding.

    The body is compact JSON ``{"t": target, "k": key, "d": direction}``;
    the tag is a truncated HMAC-SHA256 of the body. Without a configured
    secret a random per-process key is used, so tokens stop validating
    after a restart.
    """

    def __init__(self, secret: str | bytes | None = None) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._key = secret or secrets.token_bytes(32)

    def _tag(self, body: bytes) -> bytes:
        return hmac.new(self._key, body, hashlib.sha256).digest()[:_TAG_BYTES]

    def encode(self, token: ContinuationToken) -> str:
        body = json.dumps(
            {"t": token.target_id, "k": token.key, "d": token.direction},
            separators=(",", ":"),
        ).encode("utf-8")
        return f"{_b64encode(body)}.{_b64encode(self._tag(body))}"

    def decode(self, text: str, target_id: str) -> ContinuationToken:
        """Verify and parse *text* for *target_id*.

        Raises:
            InvalidContinuationTokenError: if the token is malformed, its tag
                does not verify, or it was issued for a different target.
        """
        body_part, sep, tag_part = text.partition(".")
        if not sep:
            raise InvalidContinuationTokenError("Malformed continuation token")
        try:
            body = _b64decode(body_part)
            tag = _b64decode(tag_part)
        except (binascii.Error, ValueError) as exc:
            raise InvalidContinuationTokenError("Malformed continuation token") from exc
        if not hmac.compare_digest(tag, self._tag(body)):
            raise InvalidContinuationTokenError("Continuation token failed verification")

        try:
            data = json.loads(body)
            token = ContinuationToken(
                target_id=str(data["t"]),
                key=str(data["k"]),
                direction=str(data.get("d", _DESCENDING)),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise InvalidContinuationTokenError("Malformed continuation token") from exc

        if token.target_id != target_id:
            raise InvalidContinuationTokenError("Continuation token belongs to another target")
        if token.direction != _DESCENDING:
            raise InvalidContinuationTokenError(f"Unsupported scan direction {token.direction!r}")
        return token
