import tasks


class TestCelerySetup:
    def test_beat_schedule(self):
        schedule = tasks.celery.conf.beat_schedule
        assert schedule["daily-sync"]["task"] == "tasks.sync_today_task"
        assert schedule["daily-sitemap"]["task"] == "tasks.generate_sitemap_task"

    def test_tasks_are_registered(self):
        for name in ("tasks.sync_today_task", "tasks.sync_store_task", "tasks.sync_data_task",
                     "tasks.sync_holiday_coupons_task", "tasks.sync_cashback_rates_task",
                     "tasks.generate_sitemap_task", "tasks.scrape_coupon_page_task"):
            assert name in tasks.celery.tasks


class TestTaskBodies:
    """Tasks called in-process run synchronously."""

    def test_store_sync_for_unknown_store(self, db):
        result = tasks.sync_store_task("ghost")
        assert result["success"] is False
        assert "ghost" in result["error"]

    def test_generate_sitemap(self, db, tmp_path, monkeypatch):
        monkeypatch.setattr(tasks.config, "SITEMAP_PATH", str(tmp_path / "sitemap.xml"))
        assert tasks.generate_sitemap_task() == 31
        assert (tmp_path / "sitemap.xml").exists()

    def test_cashback_rates(self, db, make_store, monkeypatch):
        monkeypatch.setattr(tasks.config, "SYNC_STEP_DELAY", 0)
        make_store("Nike", is_featured=1)
        result = tasks.sync_cashback_rates_task()
        assert result == {"success_count": 1, "error_count": 0, "special_updated": 0}

    def test_sync_data_all_runs_the_full_sequence(self, monkeypatch):
        calls = []
        monkeypatch.setattr(tasks.DataSyncService, "run_all", lambda self: calls.append("all") or {"ok": True})
        assert tasks.sync_data_task() == {"ok": True}
        assert calls == ["all"]
