"""
Idea Engine - Provider Rate Limit State

Fixed-window request/token allowance, one instance per provider. The window
rolls lazily: the first check after window_reset_at refills the allowance.

Usage:
    state = RateLimitState(requests_per_window=500, tokens_per_window=40_000)
    if state.try_acquire(estimated_tokens=300):
        ...
        state.record_usage(tokens_used=1200, reserved_tokens=300)
"""

import threading
import time
from typing import Callable, Dict, Any, Optional

from ai_types import RateLimitHint
from constants import RATE_LIMIT_WINDOW_SECONDS


class RateLimitState:
    """Request/token budget for a single provider."""

    def __init__(
        self,
        requests_per_window: int,
        tokens_per_window: int,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if requests_per_window < 1 or tokens_per_window < 1:
            raise ValueError("rate limit allowances must be positive")
        self.requests_per_window = requests_per_window
        self.tokens_per_window = tokens_per_window
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self.requests_remaining = requests_per_window
        self.tokens_remaining = tokens_per_window
        self.window_reset_at = clock() + window_seconds

    def _roll_window(self, now: float) -> None:
        # Caller holds the lock
        if now > self.window_reset_at:
            self.requests_remaining = self.requests_per_window
            self.tokens_remaining = self.tokens_per_window
            elapsed_windows = int((now - self.window_reset_at) // self.window_seconds) + 1
            self.window_reset_at += elapsed_windows * self.window_seconds

    def is_rate_limited(self) -> bool:
        with self._lock:
            self._roll_window(self._clock())
            return self.requests_remaining <= 0 or self.tokens_remaining <= 0

    def get_wait_time(self) -> float:
        """Seconds until the allowance refills (0 when not limited)."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self.requests_remaining > 0 and self.tokens_remaining > 0:
                return 0.0
            return max(0.0, self.window_reset_at - now)

    def headroom(self) -> int:
        """Requests left in the current window, used for tie-breaking."""
        with self._lock:
            self._roll_window(self._clock())
            return self.requests_remaining

    def try_acquire(self, estimated_tokens: int = 0) -> bool:
        """
        Reserve one request slot and an input-token estimate for a dispatch.

        Check and reservation happen under one lock, so concurrent callers
        can never take more slots than the window holds. Settle with
        record_usage(..., reserved_tokens=) or hand back with release().
        """
        with self._lock:
            self._roll_window(self._clock())
            if self.requests_remaining <= 0 or self.tokens_remaining <= 0:
                return False
            self.requests_remaining -= 1
            self.tokens_remaining = max(0, self.tokens_remaining - max(0, estimated_tokens))
            return True

    def release(self, reserved_tokens: int = 0) -> None:
        """Hand back a reservation for a call that failed without using quota."""
        with self._lock:
            self._roll_window(self._clock())
            self.requests_remaining = min(self.requests_per_window, self.requests_remaining + 1)
            self.tokens_remaining = min(
                self.tokens_per_window, self.tokens_remaining + max(0, reserved_tokens)
            )

    def record_usage(
        self,
        tokens_used: int,
        hint: Optional[RateLimitHint] = None,
        reserved_tokens: Optional[int] = None,
    ) -> None:
        """
        Account for one completed call, then apply any backend-reported limits.

        With reserved_tokens the request slot was already taken by
        try_acquire(); only the token difference is charged.
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if reserved_tokens is None:
                self.requests_remaining = max(0, self.requests_remaining - 1)
                charge = max(0, tokens_used)
            else:
                charge = max(0, tokens_used) - max(0, reserved_tokens)
            self.tokens_remaining = max(0, min(self.tokens_per_window, self.tokens_remaining - charge))
            if hint is not None:
                self._apply_hint(hint, now)

    def mark_exhausted(self, retry_after: Optional[float] = None) -> None:
        """The backend answered 429: treat the window as spent."""
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            self.requests_remaining = 0
            if retry_after is not None and retry_after > 0:
                self.window_reset_at = now + retry_after

    def _apply_hint(self, hint: RateLimitHint, now: float) -> None:
        if hint.requests_remaining is not None:
            self.requests_remaining = max(0, min(hint.requests_remaining, self.requests_per_window))
        if hint.tokens_remaining is not None:
            self.tokens_remaining = max(0, min(hint.tokens_remaining, self.tokens_per_window))
        if hint.reset_after_seconds is not None and hint.reset_after_seconds > 0:
            self.window_reset_at = now + hint.reset_after_seconds

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            return {
                "requests_per_window": self.requests_per_window,
                "tokens_per_window": self.tokens_per_window,
                "requests_remaining": self.requests_remaining,
                "tokens_remaining": self.tokens_remaining,
                "window_reset_at": self.window_reset_at,
                "wait_seconds": (
                    0.0 if self.requests_remaining > 0 and self.tokens_remaining > 0
                    else round(max(0.0, self.window_reset_at - now), 3)
                ),
            }
