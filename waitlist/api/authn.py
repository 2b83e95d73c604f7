from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException

from waitlist.config import Settings, get_settings
from waitlist.security.web_auth import verify_admin_token


def resolve_email_from_bearer(*, authorization: str | None, settings: Settings) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    token = authorization.removeprefix("Bearer ").strip()
    email = verify_admin_token(token, settings=settings)
    if email is None:
        raise HTTPException(status_code=401, detail="invalid bearer token")
    return email


def require_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    email = resolve_email_from_bearer(authorization=authorization, settings=settings)
    if email.lower() not in set(settings.admin_email_list()):
        raise HTTPException(status_code=403, detail="admin access required")
    return email
