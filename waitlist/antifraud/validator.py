from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from waitlist.models.referral import ReferralRequest

SELF_REFERRAL = "self-referral detected"
INVALID_EMAIL = "invalid email format"
SUSPICIOUS_EMAIL = "suspicious email pattern detected"
BOT_USER_AGENT = "bot user agent detected"

EMAIL_SHAPE_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SUSPICIOUS_EMAIL_MARKERS = ("test", "temp", "fake")
BOT_USER_AGENT_MARKERS = ("bot", "crawler", "spider")


@dataclass(frozen=True, slots=True)
class Valid:
    reasons: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Invalid:
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return False


ValidationResult = Valid | Invalid


def check_self_referral(request: ReferralRequest) -> str | None:
    # Compares the referrer's id with the referred email, so it only fires
    # when an id happens to be an email address. Kept as-is for parity.
    if request.referrer_id == request.referred_email:
        return SELF_REFERRAL
    return None


def check_email_format(request: ReferralRequest) -> str | None:
    if not EMAIL_SHAPE_RE.match(request.referred_email):
        return INVALID_EMAIL
    return None


def check_suspicious_email(request: ReferralRequest) -> str | None:
    if any(marker in request.referred_email for marker in SUSPICIOUS_EMAIL_MARKERS):
        return SUSPICIOUS_EMAIL
    return None


def check_bot_user_agent(request: ReferralRequest) -> str | None:
    user_agent = request.user_agent
    if user_agent and any(marker in user_agent for marker in BOT_USER_AGENT_MARKERS):
        return BOT_USER_AGENT
    return None


CHECKS: tuple[Callable[[ReferralRequest], str | None], ...] = (
    check_self_referral,
    check_email_format,
    check_suspicious_email,
    check_bot_user_agent,
)


def validate_referral(request: ReferralRequest) -> ValidationResult:
    """Run every check and collect all failing reasons."""
    reasons = tuple(reason for check in CHECKS if (reason := check(request)) is not None)
    if reasons:
        return Invalid(reasons)
    return Valid()
