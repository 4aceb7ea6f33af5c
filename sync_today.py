"""
sync_today.py
-------------
Daily batch run. Executes every analysis and sync job in order, stops early
when a critical job fails, and prints a summary.

Usage: python sync_today.py
"""

import sys
import time
from datetime import datetime

import db_models
import generate_sitemap
import similar_stores
import sync_cashback_rates
import sync_holiday_coupons
from logger import get_logger
from sync_data import DataSyncService

logger = get_logger(__name__)

CRITICAL_TASKS = ("Store Analysis & Ratings", "Store Popularity Scoring")


def run_step(func, *args):
    """
    Runs one batch step. Returns (success, result, error); a step fails when it
    raises or returns None.
    """
    try:
        result = func(*args)
    except Exception as e:  # steps are isolated from each other
        logger.exception("Step %s raised", getattr(func, "__name__", func))
        return False, None, str(e)
    if result is None:
        return False, None, "step returned no result"
    return True, result, None


class TodaySyncService:
    def __init__(self, tasks=None, clock=time.time):
        self._clock = clock
        self.start_time = clock()
        self.task_results = []
        self.tasks = tasks if tasks is not None else self.default_tasks()

    @staticmethod
    def default_tasks():
        sync = DataSyncService()
        return [
            ("Store Analysis & Ratings", "Analyze store discounts and generate ratings/reviews",
             sync.analyze_store_discounts),
            ("Store Popularity Scoring", "Update store popularity scores and featured flags",
             sync.update_store_popularity),
            ("Similar Stores Analysis", "Generate similar store recommendations",
             similar_stores.SimilarStoresAnalyzer().analyze_all),
            ("Holiday Coupons Sync", "Sync holiday-themed coupons",
             sync_holiday_coupons.sync_holiday_coupons),
            ("Cashback Rates Sync", "Publish cashback rates for featured stores",
             sync_cashback_rates.sync_cashback_rates),
            ("Sitemap Generation", "Regenerate sitemap.xml",
             generate_sitemap.generate_sitemap),
        ]

    def execute_task(self, name, description, func):
        logger.info("=" * 60)
        logger.info("%s: %s", name, description)
        logger.info("=" * 60)

        started = self._clock()
        success, _, error = run_step(func)
        duration = round(self._clock() - started, 2)
        if success:
            logger.info("%s completed in %ss", name, duration)
            self.task_results.append({"task": name, "status": "success", "duration": duration})
        else:
            logger.error("%s failed after %ss: %s", name, duration, error)
            self.task_results.append({"task": name, "status": "failed", "duration": duration, "error": error})
        return success

    def print_summary(self):
        total = round(self._clock() - self.start_time)
        logger.info("=" * 80)
        logger.info("DAILY SYNC SUMMARY - Total Time: %ss", total)
        logger.info("=" * 80)

        failed = 0
        for index, result in enumerate(self.task_results, 1):
            mark = "OK" if result["status"] == "success" else "FAILED"
            logger.info("%s. [%s] %s (%ss)", index, mark, result["task"], round(result["duration"]))
            if result["status"] != "success":
                failed += 1
                logger.info("   Error: %s", result["error"])

        logger.info("Results: %s successful, %s failed", len(self.task_results) - failed, failed)
        if failed:
            logger.warning("Some tasks failed, check the log above")
        else:
            logger.info("All daily sync tasks completed successfully")

    def run(self):
        """Runs the task list and returns the process exit code."""
        logger.info("Starting daily sync at %s", datetime.now().isoformat())
        for name, description, func in self.tasks:
            success = self.execute_task(name, description, func)
            if not success and name in CRITICAL_TASKS:
                logger.error("Critical task failed, skipping remaining tasks")
                break

        self.print_summary()
        return 1 if any(r["status"] == "failed" for r in self.task_results) else 0


def main():
    db_models.create_tables()
    return TodaySyncService().run()


if __name__ == "__main__":
    sys.exit(main())
