from __future__ import annotations


class WaitlistError(Exception):
    """Base class for errors raised by the referral and wave handlers."""


class ReferralValidationError(WaitlistError):
    def __init__(self, reasons: list[str]) -> None:
        self.reasons = list(reasons)
        super().__init__(f"Invalid referral data: {', '.join(self.reasons)}")


class ThrottledError(WaitlistError):
    def __init__(
        self,
        reason: str,
        *,
        remaining_attempts: int | None = None,
        remaining_verifications: int | None = None,
    ) -> None:
        self.reason = reason
        self.remaining_attempts = remaining_attempts
        self.remaining_verifications = remaining_verifications
        super().__init__(reason)


class DuplicateReferralError(WaitlistError):
    def __init__(self, referrer_id: str, referred_email: str) -> None:
        self.referrer_id = referrer_id
        self.referred_email = referred_email
        super().__init__("referral already exists")


class StoreError(WaitlistError):
    """A data-store call failed, timed out or violated a constraint."""


class StoreConflictError(StoreError):
    """A write collided with a unique key."""


class NotificationError(WaitlistError):
    """A best-effort email or CRM call failed. Logged, never surfaced."""


class WaveNotFoundError(WaitlistError):
    def __init__(self, wave_id: object) -> None:
        self.wave_id = wave_id
        super().__init__("wave not found")


class WaveActiveError(WaitlistError):
    def __init__(self, wave_id: object) -> None:
        self.wave_id = wave_id
        super().__init__("wave is active; deactivate it first")


class InvalidWaveRangeError(WaitlistError):
    def __init__(self, start_position: int, end_position: int) -> None:
        self.start_position = start_position
        self.end_position = end_position
        super().__init__("start position must be less than or equal to end position")
