"""
process_store.py
----------------
Refreshes the derived data of a single store: discount analysis, popularity
and similar stores.

Usage: python process_store.py <store-name>
"""

import sys
import time

import db_models
from logger import get_logger
from similar_stores import SimilarStoresAnalyzer
from sync_data import DataSyncService
from sync_today import run_step

logger = get_logger(__name__)


def build_queue(store_name):
    sync = DataSyncService()
    return [
        ("Analyze store discounts and generate ratings", sync.analyze_store_discounts, store_name),
        ("Update store popularity score", sync.update_store_popularity, store_name),
        ("Generate similar store recommendations", SimilarStoresAnalyzer().analyze_single, store_name),
    ]


def process_store(store_name, queue=None):
    """Runs every step even when an earlier one fails; returns the per-step results."""
    started = time.time()
    queue = queue if queue is not None else build_queue(store_name)
    logger.info("#" * 60)
    logger.info("STORE PROCESSING QUEUE - %s", store_name)
    logger.info("#" * 60)

    results = []
    for step, (description, func, arg) in enumerate(queue, 1):
        logger.info("STEP %s/%s: %s", step, len(queue), description)
        success, _, error = run_step(func, arg)
        if success:
            logger.info("%s completed", description)
        else:
            logger.warning("%s failed (%s), continuing with remaining steps", description, error)
        results.append({"step": step, "description": description, "success": success})

    failed = sum(1 for r in results if not r["success"])
    logger.info("PROCESSING SUMMARY")
    for r in results:
        logger.info("  [%s] Step %s: %s", "OK" if r["success"] else "FAILED", r["step"], r["description"])
    logger.info("Total steps: %s, successful: %s, failed: %s, duration: %.2fs",
                len(results), len(results) - failed, failed, time.time() - started)
    if failed:
        logger.warning("Processing completed with %s failed step(s)", failed)
    else:
        logger.info("All processing steps completed for %r", store_name)
    return results


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Error: store name is required")
        print("Usage: python process_store.py <store-name>")
        return 1

    db_models.create_tables()
    process_store(argv[0])
    return 0


if __name__ == "__main__":
    sys.exit(main())
