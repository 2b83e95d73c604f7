from waitlist.antifraud.counters import CounterStore, InMemoryCounterStore
from waitlist.antifraud.rate_limit import ReferralRateLimiter
from waitlist.antifraud.sweeper import run_counter_sweeper, sweep_counters
from waitlist.antifraud.throttle import IPThrottleLedger, ThrottleConfig, ThrottleResult
from waitlist.antifraud.validator import Invalid, Valid, ValidationResult, validate_referral

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "IPThrottleLedger",
    "Invalid",
    "ReferralRateLimiter",
    "ThrottleConfig",
    "ThrottleResult",
    "Valid",
    "ValidationResult",
    "run_counter_sweeper",
    "sweep_counters",
    "validate_referral",
]
