from waitlist.scheduler.main import CycleResult, digest_due, run_cycle, scheduler_loop

__all__ = ["CycleResult", "digest_due", "run_cycle", "scheduler_loop"]
