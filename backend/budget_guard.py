"""
Idea Engine - Budget Guard
==========================

Tracks cumulative AI spend against daily and monthly caps and decides, before
dispatch, which capability tiers a request may use.

Policy (utilization = max(daily, monthly) spend / limit):
- below 80%:   no restriction
- 80% - 100%:  premium tier excluded unless priority is critical
- 100% and up: BudgetExceededException unless priority is critical, in which
               case the request proceeds and overshoots the cap
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Dict, Any, List, FrozenSet

from ai_errors import BudgetExceededException
from ai_types import CapabilityTier, Priority, TaskType
from constants import BUDGET_DOWNGRADE_THRESHOLD, BUDGET_HARD_LIMIT

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BudgetState:
    daily_spend: float
    monthly_spend: float
    daily_limit: float
    monthly_limit: float
    period_start: datetime


@dataclass
class UsageRecord:
    """Record of a single AI usage."""
    provider: str
    model: str
    task_type: TaskType
    tokens_used: int
    cost_usd: float
    timestamp: datetime = field(default_factory=_utcnow)
    latency_ms: Optional[int] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class BudgetDecision:
    """Outcome of a pre-dispatch budget check."""
    utilization: float
    allowed_tiers: FrozenSet[CapabilityTier]
    reason: str
    overshoot: bool = False


class BudgetGuard:
    """
    Track AI spend and enforce budget limits.

    All writes go through a single lock so concurrent requests can't lose
    increments. Reads used for filtering may be slightly stale.
    """

    MAX_USAGE_RECORDS = 10_000

    def __init__(
        self,
        daily_limit: float = 50.0,
        monthly_limit: float = 1000.0,
        enable_cost_optimization: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if daily_limit <= 0 or monthly_limit <= 0:
            raise ValueError("budget limits must be positive")
        self._clock = clock
        self._lock = threading.Lock()
        self.enable_cost_optimization = enable_cost_optimization
        self._state = BudgetState(
            daily_spend=0.0,
            monthly_spend=0.0,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            period_start=clock(),
        )
        self._usage_records: List[UsageRecord] = []

    # -------------------------------------------------------------------------
    # Period handling
    # -------------------------------------------------------------------------

    def _roll_period(self, now: datetime) -> None:
        # Caller holds the lock
        start = self._state.period_start
        if (now.year, now.month) != (start.year, start.month):
            logger.info("Budget period rolled over to %04d-%02d", now.year, now.month)
            self._state.monthly_spend = 0.0
            self._state.daily_spend = 0.0
            self._state.period_start = now
        elif now.date() != start.date():
            self._state.daily_spend = 0.0
            self._state.period_start = now

    def seed(self, daily_spend: float, monthly_spend: float) -> None:
        """Restore spend already recorded this period (e.g. from the usage ledger)."""
        with self._lock:
            self._roll_period(self._clock())
            self._state.daily_spend = max(self._state.daily_spend, daily_spend, 0.0)
            self._state.monthly_spend = max(
                self._state.monthly_spend, monthly_spend, self._state.daily_spend
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_state(self) -> BudgetState:
        with self._lock:
            self._roll_period(self._clock())
            s = self._state
            return BudgetState(
                s.daily_spend, s.monthly_spend, s.daily_limit, s.monthly_limit, s.period_start
            )

    def utilization(self) -> float:
        s = self.get_state()
        return max(s.daily_spend / s.daily_limit, s.monthly_spend / s.monthly_limit)

    def get_remaining_budget(self) -> float:
        """Smaller of the remaining daily and monthly allowance."""
        s = self.get_state()
        return min(s.daily_limit - s.daily_spend, s.monthly_limit - s.monthly_spend)

    def evaluate(self, priority: Priority) -> BudgetDecision:
        """
        Decide which tiers a request may use.

        Raises:
            BudgetExceededException: cap reached and priority is not critical.
        """
        utilization = self.utilization()
        all_tiers = frozenset(CapabilityTier)
        critical = priority == Priority.CRITICAL

        if utilization >= BUDGET_HARD_LIMIT:
            if not critical:
                s = self.get_state()
                raise BudgetExceededException(
                    f"Budget exhausted ({utilization:.0%} used). "
                    f"Today's spend: ${s.daily_spend:.4f} / ${s.daily_limit:.2f}, "
                    f"month: ${s.monthly_spend:.4f} / ${s.monthly_limit:.2f}",
                    utilization=utilization,
                )
            logger.warning(
                "Budget exhausted (%.0f%%) - critical request allowed to overshoot",
                utilization * 100,
            )
            return BudgetDecision(
                utilization, all_tiers, "budget exhausted, critical overshoot", overshoot=True
            )

        if (
            utilization >= BUDGET_DOWNGRADE_THRESHOLD
            and self.enable_cost_optimization
            and not critical
        ):
            allowed = frozenset(t for t in all_tiers if t != max(all_tiers))
            return BudgetDecision(
                utilization, allowed, f"budget {utilization:.0%} used, premium tier excluded"
            )

        return BudgetDecision(utilization, all_tiers, f"budget {utilization:.0%} used")

    def can_afford(self, estimated_cost: float, priority: Priority) -> bool:
        """Pre-flight check for one candidate. Critical requests always pass."""
        if priority == Priority.CRITICAL:
            return True
        return estimated_cost <= self.get_remaining_budget()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record_spend(
        self,
        cost: float,
        provider: str,
        model: str,
        task_type: TaskType,
        tokens_used: int = 0,
        latency_ms: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> UsageRecord:
        """Add the adapter-reported cost to both periods."""
        if cost < 0:
            raise ValueError("cost must not be negative")
        with self._lock:
            now = self._clock()
            self._roll_period(now)
            record = UsageRecord(
                provider=provider,
                model=model,
                task_type=task_type,
                tokens_used=tokens_used,
                cost_usd=cost,
                latency_ms=latency_ms,
                user_id=user_id,
                timestamp=now,
            )
            self._state.daily_spend += cost
            self._state.monthly_spend += cost
            self._usage_records.append(record)
            # Cap usage records to prevent unbounded memory growth
            if len(self._usage_records) > self.MAX_USAGE_RECORDS:
                self._usage_records = self._usage_records[-self.MAX_USAGE_RECORDS // 2:]
        return record

    def get_usage_summary(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Get usage summary."""
        with self._lock:
            records = list(self._usage_records)
        if since:
            records = [r for r in records if r.timestamp >= since]

        by_model: Dict[str, Dict[str, Any]] = {}
        by_provider: Dict[str, float] = {}
        by_task: Dict[str, Dict[str, Any]] = {}

        for r in records:
            model_stats = by_model.setdefault(r.model, {"cost": 0.0, "count": 0, "tokens": 0})
            model_stats["cost"] += r.cost_usd
            model_stats["count"] += 1
            model_stats["tokens"] += r.tokens_used

            by_provider[r.provider] = by_provider.get(r.provider, 0.0) + r.cost_usd

            task_stats = by_task.setdefault(r.task_type.value, {"cost": 0.0, "count": 0})
            task_stats["cost"] += r.cost_usd
            task_stats["count"] += 1

        state = self.get_state()
        return {
            "total_cost_usd": sum(r.cost_usd for r in records),
            "total_requests": len(records),
            "total_tokens": sum(r.tokens_used for r in records),
            "by_model": by_model,
            "by_provider": by_provider,
            "by_task": by_task,
            "daily_spend": state.daily_spend,
            "monthly_spend": state.monthly_spend,
            "daily_limit": state.daily_limit,
            "monthly_limit": state.monthly_limit,
        }
