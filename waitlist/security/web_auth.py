"""Signed bearer tokens for the admin API.

Tokens are ``<payload>.<signature>``: base64url JSON claims and an HMAC-SHA256
over them with ``WEB_ACCESS_TOKEN_SECRET``. Only the ``admin`` scope exists.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import timedelta

from waitlist.clock import Clock, utc_now
from waitlist.config import Settings, get_settings

ADMIN_SCOPE = "admin"
TOKEN_VERSION = 1


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _signature(payload_b64: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def issue_admin_token(email: str, *, settings: Settings | None = None, clock: Clock = utc_now) -> str:
    settings = settings or get_settings()
    expires_at = clock() + timedelta(hours=settings.web_access_token_expiry_hours)
    claims = {
        "sub": email.strip().lower(),
        "scope": ADMIN_SCOPE,
        "exp": int(expires_at.timestamp()),
        "v": TOKEN_VERSION,
    }
    payload_b64 = _b64encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{payload_b64}.{_signature(payload_b64, settings.web_access_token_secret)}"


def verify_admin_token(token: str, *, settings: Settings | None = None, clock: Clock = utc_now) -> str | None:
    """Return the token's email if it is well-formed, correctly signed and unexpired."""
    settings = settings or get_settings()
    payload_b64, dot, signature_b64 = token.partition(".")
    if not dot or not payload_b64:
        return None
    if not hmac.compare_digest(signature_b64, _signature(payload_b64, settings.web_access_token_secret)):
        return None

    try:
        claims = json.loads(_b64decode(payload_b64))
    except (ValueError, binascii.Error):
        return None
    if not isinstance(claims, dict) or claims.get("scope") != ADMIN_SCOPE:
        return None

    email = claims.get("sub")
    exp = claims.get("exp")
    if not isinstance(email, str) or not isinstance(exp, int):
        return None
    if int(clock().timestamp()) >= exp:
        return None
    return email
