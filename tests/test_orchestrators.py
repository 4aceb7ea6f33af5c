import json

import pytest

import db_models
import process_store
import sync_cashback_rates
from sync_store import StoreNotFoundError, StoreSyncOrchestrator
from sync_today import TodaySyncService, run_step


def boom():
    raise RuntimeError("boom")


class TestRunStep:
    def test_success(self):
        assert run_step(lambda x: x * 2, 3) == (True, 6, None)

    def test_exception_is_a_failure(self):
        assert run_step(boom) == (False, None, "boom")

    def test_none_result_is_a_failure(self):
        success, result, error = run_step(lambda: None)
        assert success is False
        assert error


class TestTodaySyncService:
    """Daily batch run and its exit code."""

    def test_all_tasks_succeed(self):
        calls = []
        tasks = [
            ("Store Analysis & Ratings", "analyze", lambda: calls.append("a") or {}),
            ("Sitemap Generation", "sitemap", lambda: calls.append("b") or 31),
        ]
        service = TodaySyncService(tasks=tasks)
        assert service.run() == 0
        assert calls == ["a", "b"]
        assert [r["status"] for r in service.task_results] == ["success", "success"]

    def test_critical_failure_stops_the_run(self):
        calls = []
        tasks = [
            ("Store Analysis & Ratings", "analyze", boom),
            ("Similar Stores Analysis", "similar", lambda: calls.append("ran") or {}),
        ]
        service = TodaySyncService(tasks=tasks)
        assert service.run() == 1
        assert calls == []
        assert service.task_results[0]["error"] == "boom"

    def test_non_critical_failure_continues(self):
        calls = []
        tasks = [
            ("Holiday Coupons Sync", "holidays", lambda: None),
            ("Sitemap Generation", "sitemap", lambda: calls.append("ran") or 31),
        ]
        service = TodaySyncService(tasks=tasks)
        assert service.run() == 1
        assert calls == ["ran"]
        assert [r["status"] for r in service.task_results] == ["failed", "success"]

    def test_durations_use_the_clock(self):
        ticks = iter(range(100))
        service = TodaySyncService(tasks=[("Sitemap Generation", "", lambda: 1)], clock=lambda: next(ticks))
        service.run()
        assert service.task_results[0]["duration"] == 1


class TestProcessStore:
    def test_runs_every_step(self):
        seen = []
        queue = [
            ("first", lambda name: seen.append(("first", name)) or {}, "nike"),
            ("second", lambda name: boom(), "nike"),
            ("third", lambda name: seen.append(("third", name)) or {}, "nike"),
        ]
        results = process_store.process_store("nike", queue=queue)
        assert [r["success"] for r in results] == [True, False, True]
        assert [r["step"] for r in results] == [1, 2, 3]
        assert seen == [("first", "nike"), ("third", "nike")]

    def test_main_requires_a_store(self):
        assert process_store.main([]) == 1


class FakeSyncService:
    def __init__(self):
        self.calls = []

    def analyze_store_discounts(self, name):
        self.calls.append(("analyze", name))
        return {"processed_count": 1}

    def update_store_popularity(self, name):
        self.calls.append(("popularity", name))
        return None


class FakeAnalyzer:
    def analyze_single(self, name):
        return {1: []}


class TestStoreSyncOrchestrator:
    """Webhook-driven sync of one store."""

    def test_exact_match_wins(self, db, make_store):
        make_store("Nike Outlet")
        nike = make_store("Nike")
        orchestrator = StoreSyncOrchestrator("NIKE", sync_service=FakeSyncService(), analyzer=FakeAnalyzer())
        assert orchestrator.validate_store()["id"] == nike

    def test_partial_match_falls_back_to_first(self, db, make_store):
        outlet = make_store("Nike Outlet")
        orchestrator = StoreSyncOrchestrator("outlet", sync_service=FakeSyncService(), analyzer=FakeAnalyzer())
        assert orchestrator.validate_store()["id"] == outlet

    def test_sync_store_runs_steps_by_alias(self, db, make_store):
        make_store("Nike Store")
        service = FakeSyncService()
        result = StoreSyncOrchestrator("Nike Store", sync_service=service, analyzer=FakeAnalyzer()).sync_store()

        assert result["success"] is True
        assert result["store"]["alias"] == "nike-store"
        assert [s["success"] for s in result["steps"]] == [True, False, True]
        assert service.calls == [("analyze", "nike-store"), ("popularity", "nike-store")]

        logs = db_models.get_sync_logs("store_webhook")
        assert logs[0]["status"] == "completed"
        assert logs[0]["details"] == {"store": "Nike Store", "alias": "nike-store"}
        assert any(log["status"] == "error" for log in logs)

    def test_unknown_store(self, db):
        orchestrator = StoreSyncOrchestrator("ghost", sync_service=FakeSyncService(), analyzer=FakeAnalyzer())
        with pytest.raises(StoreNotFoundError):
            orchestrator.sync_store()
        last = db_models.get_sync_logs("store_webhook")[0]
        assert last["status"] == "error"
        assert last["error_count"] == 1


class TestCashbackRateSync:
    def test_featured_stores_get_half_commission(self, db, make_store):
        featured = make_store("Nike", is_featured=1, commission_rate_data=json.dumps({"rate": 8}))
        plain = make_store("Plain", is_featured=1)
        hidden = make_store("Hidden", is_featured=0, commission_rate_data=json.dumps({"rate": 8}))

        result = sync_cashback_rates.sync_cashback_rates(sleep=lambda s: None)
        assert result == {"success_count": 2, "error_count": 0}
        assert db_models.get_active_cashback_rate(featured)["cashback_rate"] == 4.0
        assert db_models.get_active_cashback_rate(plain)["cashback_rate"] == 2.0
        assert db_models.get_active_cashback_rate(hidden) is None

    def test_special_category_rates(self, db, make_store):
        fashion = db_models.add_category("Fashion", "fashion")
        nike = make_store("Nike", is_featured=1)
        zara = make_store("Zara", is_featured=0)
        db_models.assign_store_category(nike, fashion)
        db_models.assign_store_category(zara, fashion)

        assert sync_cashback_rates.set_special_rates() == 1
        assert db_models.get_active_cashback_rate(nike)["cashback_rate"] == 8.0
        assert db_models.get_active_cashback_rate(zara) is None
