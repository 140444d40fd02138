"""
Idea Engine - AI Usage Ledger
=============================

Durable record of every routed AI call (successes, cache hits and errors)
in the ai_model_metrics table. Used for cost reporting and to restore the
Budget Guard's spend after a restart.

Writes are synchronous SQLAlchemy calls pushed off the event loop with
asyncio.to_thread. A failing ledger never fails a request: errors are
logged and dropped.

Usage:
    ledger = UsageLedger("sqlite:///./idea_engine.db")
    await ledger.record_success(request, response)
    spent_today = ledger.spend_since(start_of_day)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, DateTime, Text, Boolean, func,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from ai_types import AIRequest, RouterResponse

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AIUsageRecord(Base):
    """One routed AI call. Timestamps are naive UTC."""
    __tablename__ = "ai_model_metrics"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String, index=True)
    task_type = Column(String, index=True)
    model = Column(String, index=True)
    provider = Column(String, index=True)
    tokens_used = Column(Integer, default=0)
    cost = Column(Float, default=0.0)
    latency_ms = Column(Integer, default=0)
    success = Column(Boolean, default=True)
    fallback_used = Column(Boolean, default=False)
    cached = Column(Boolean, default=False)
    user_id = Column(String, nullable=True)
    error_type = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow_naive, index=True)


class UsageLedger:
    """SQLAlchemy-backed store of AIUsageRecord rows."""

    def __init__(self, database_url: str, create_tables: bool = True):
        engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every thread sees an empty DB
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        if create_tables:
            Base.metadata.create_all(bind=self.engine)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _insert(self, record: AIUsageRecord) -> None:
        session = self.SessionLocal()
        try:
            session.add(record)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning("Failed to write AI usage record %s: %s", record.request_id, e)
        finally:
            session.close()

    async def record_success(self, request: AIRequest, response: RouterResponse) -> None:
        record = AIUsageRecord(
            request_id=request.request_id,
            task_type=request.task_type.value,
            model=response.model,
            provider=response.provider,
            tokens_used=response.tokens_used,
            cost=response.cost,
            latency_ms=response.latency_ms,
            success=True,
            fallback_used=response.fallback_used,
            cached=response.cached,
            user_id=request.user_id,
        )
        await asyncio.to_thread(self._insert, record)

    async def record_error(
        self,
        request: AIRequest,
        error: Exception,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        latency_ms: int = 0,
    ) -> None:
        record = AIUsageRecord(
            request_id=request.request_id,
            task_type=request.task_type.value,
            model=model,
            provider=provider,
            tokens_used=0,
            cost=0.0,
            latency_ms=latency_ms,
            success=False,
            user_id=request.user_id,
            error_type=type(error).__name__,
            error_message=str(error)[:2000],
        )
        await asyncio.to_thread(self._insert, record)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def spend_since(self, since: datetime) -> float:
        """Total non-cached cost recorded at or after `since`."""
        session = self.SessionLocal()
        try:
            total = (
                session.query(func.coalesce(func.sum(AIUsageRecord.cost), 0.0))
                .filter(AIUsageRecord.created_at >= _as_naive_utc(since))
                .filter(AIUsageRecord.cached.is_(False))
                .scalar()
            )
            return float(total or 0.0)
        finally:
            session.close()

    def daily_costs(self, days: int = 7) -> List[Dict[str, Any]]:
        """Per-day cost and request count for the last `days` days, oldest first."""
        start = _utcnow_naive().replace(hour=0, minute=0, second=0, microsecond=0)
        start -= timedelta(days=days - 1)

        session = self.SessionLocal()
        try:
            day = func.date(AIUsageRecord.created_at)
            rows = (
                session.query(
                    day.label("day"),
                    func.sum(AIUsageRecord.cost).label("cost"),
                    func.count(AIUsageRecord.id).label("requests"),
                )
                .filter(AIUsageRecord.created_at >= start)
                .group_by(day)
                .order_by(day)
                .all()
            )
        finally:
            session.close()

        return [
            {"date": str(row.day), "cost_usd": round(float(row.cost or 0.0), 6), "requests": row.requests}
            for row in rows
        ]

    def recent(self, limit: int = 50) -> List[AIUsageRecord]:
        session = self.SessionLocal()
        try:
            return (
                session.query(AIUsageRecord)
                .order_by(AIUsageRecord.created_at.desc(), AIUsageRecord.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()
