from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class RetryPolicy:
    """
    Caller-owned exponential backoff schedule for rate-limited fetches.

    Nothing in the services sleeps or schedules timers. When the Meta API
    throttles a request, the API layer records the failure on a policy and
    returns it to the caller, who re-invokes the endpoint once
    `next_eligible_at` has passed and echoes `attempt` back.

    Delays start at `base_delay` seconds and double per attempt up to
    `max_delay` (5s, 10s, 20s, ... capped at 120s by default).
    """
    base_delay: float = 5.0
    max_delay: float = 120.0
    attempt: int = 0
    next_eligible_at: datetime = None

    def delay_for(self, attempt):
        """Delay in seconds that follows the `attempt`-th consecutive failure (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def record_failure(self, now=None):
        now = now or datetime.utcnow()
        self.attempt += 1
        self.next_eligible_at = now + timedelta(seconds=self.delay_for(self.attempt))
        return self.next_eligible_at

    def reset(self):
        self.attempt = 0
        self.next_eligible_at = None

    def is_eligible(self, now=None):
        if self.next_eligible_at is None:
            return True
        return (now or datetime.utcnow()) >= self.next_eligible_at

    @property
    def current_delay(self):
        return self.delay_for(self.attempt)

    def to_dict(self):
        return {
            'attempt': self.attempt,
            'delaySeconds': self.current_delay,
            'nextEligibleAt': self.next_eligible_at.isoformat() if self.next_eligible_at else None,
        }

    @classmethod
    def from_config(cls, config, attempt=0):
        """Builds a policy from app config; `attempt` is the caller-echoed count, garbage counts as 0."""
        try:
            attempt = max(int(attempt or 0), 0)
        except (TypeError, ValueError):
            attempt = 0
        return cls(base_delay=float(config.get('RETRY_BASE_DELAY', 5)),
                   max_delay=float(config.get('RETRY_MAX_DELAY', 120)),
                   attempt=attempt)
