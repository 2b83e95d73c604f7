from __future__ import annotations

from pydantic import BaseModel


class EmailMessage(BaseModel):
    """Email handed to a notification sink."""

    to: str
    subject: str
    text: str
    html: str | None = None
