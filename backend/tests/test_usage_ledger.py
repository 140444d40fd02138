"""
Idea Engine - Usage Ledger Tests

CI-safe: uses an in-memory SQLite database.

Run:
    pytest tests/test_usage_ledger.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from ai_errors import AuthFailedException
from ai_types import AIRequest, RouterResponse, TaskType
from usage_ledger import AIUsageRecord, UsageLedger


@pytest.fixture
def ledger():
    ledger = UsageLedger("sqlite://")
    yield ledger
    ledger.close()


def _response(cost=0.01, cached=False):
    return RouterResponse(
        content="ok", provider="anthropic", model="claude-sonnet-4.5", tokens_used=300,
        cost=cost, cached=cached, latency_ms=900, fallback_used=False, reasoning="t",
    )


class TestLedgerWrites:

    def test_table_name(self):
        assert AIUsageRecord.__tablename__ == "ai_model_metrics"

    @pytest.mark.asyncio
    async def test_record_success(self, ledger):
        request = AIRequest(task_type=TaskType.MARKET_ANALYSIS, prompt="p", user_id="u-7")
        await ledger.record_success(request, _response())

        rows = ledger.recent()
        assert len(rows) == 1
        row = rows[0]
        assert row.request_id == request.request_id
        assert row.task_type == "market_analysis"
        assert row.provider == "anthropic"
        assert row.success is True
        assert row.user_id == "u-7"
        assert row.cost == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_record_error(self, ledger):
        request = AIRequest(task_type=TaskType.GENERAL, prompt="p")
        await ledger.record_error(request, AuthFailedException("openai", "bad key", 401), provider="openai")

        row = ledger.recent()[0]
        assert row.success is False
        assert row.error_type == "AuthFailedException"
        assert "bad key" in row.error_message
        assert row.cost == 0.0


class TestLedgerReads:

    @pytest.mark.asyncio
    async def test_spend_since_excludes_cached_and_old(self, ledger):
        request = AIRequest(task_type=TaskType.GENERAL, prompt="p")
        await ledger.record_success(request, _response(cost=0.02))
        await ledger.record_success(request, _response(cost=0.0, cached=True))
        await ledger.record_success(request, _response(cost=0.03))

        hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        assert ledger.spend_since(hour_ago) == pytest.approx(0.05)
        assert ledger.spend_since(datetime.now(timezone.utc) + timedelta(hours=1)) == 0.0

    def test_spend_since_empty(self, ledger):
        assert ledger.spend_since(datetime(2020, 1, 1)) == 0.0

    @pytest.mark.asyncio
    async def test_daily_costs(self, ledger):
        request = AIRequest(task_type=TaskType.GENERAL, prompt="p")
        await ledger.record_success(request, _response(cost=0.02))
        await ledger.record_success(request, _response(cost=0.04))

        daily = ledger.daily_costs(7)
        assert len(daily) == 1
        assert daily[0]["cost_usd"] == pytest.approx(0.06)
        assert daily[0]["requests"] == 2


class TestRouterIntegration:

    @pytest.mark.asyncio
    async def test_router_writes_success_and_failure(self, providers, make_router, ledger):
        providers["anthropic"].script = [AuthFailedException("anthropic", "bad key", 401)]
        router = make_router(providers, usage_ledger=ledger)

        await router.route(AIRequest(task_type=TaskType.GENERAL, prompt="cheap"))
        with pytest.raises(AuthFailedException):
            await router.route(AIRequest(task_type=TaskType.BUSINESS_PLAN, prompt="plan"))

        rows = ledger.recent()
        assert [r.success for r in rows] == [False, True]
        assert rows[0].provider == "anthropic"

    @pytest.mark.asyncio
    async def test_budget_seeded_from_ledger(self, ledger, monkeypatch):
        import ai_router
        from router_settings import RouterSettings

        request = AIRequest(task_type=TaskType.GENERAL, prompt="p")
        await ledger.record_success(request, _response(cost=2.5))
        monkeypatch.setattr(ai_router, "UsageLedger", lambda url: ledger)
        monkeypatch.setattr(ledger, "close", lambda: None)

        settings = RouterSettings(database_url="sqlite://", daily_budget_usd=10.0)
        router = await ai_router.build_ai_router(settings, providers={})

        state = router.budget_guard.get_state()
        assert state.daily_spend == pytest.approx(2.5)
        assert state.monthly_spend == pytest.approx(2.5)
        await router.close()
