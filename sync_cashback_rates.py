"""
sync_cashback_rates.py
----------------------
Publishes a cashback rate for every featured store, derived from the
commission the partner network pays us.

Usage: python sync_cashback_rates.py [sync|special|all]
"""

import sys
import time

import config
import db_models
from cashback import calculate_cashback_rate
from logger import get_logger

logger = get_logger(__name__)

SPECIAL_RATES = [
    ("Fashion", 8.0),
    ("Electronics", 3.0),
    ("Travel", 5.0),
    ("Food & Dining", 6.0),
    ("Beauty & Health", 7.0),
]


def sync_cashback_rates(sleep=time.sleep):
    logger.info("Syncing cashback rates...")
    stores = [s for s in db_models.get_all_stores() if s["is_featured"]]
    logger.info("Found %s featured stores", len(stores))

    success_count = 0
    error_count = 0
    for store in stores:
        rate = calculate_cashback_rate(store["commission_rate_data"])
        result = db_models.upsert_cashback_rate(store["id"], rate)
        if result is None:
            logger.error("Failed to set cashback rate for %s", store["name"])
            error_count += 1
            continue
        success_count += 1
        logger.info("%s %s (%s): %s%% cashback",
                    "+" if result == "inserted" else "~", store["name"], store["alias"], rate)
        sleep(config.SYNC_STEP_DELAY)

    logger.info("Cashback rates synced: %s ok, %s failed", success_count, error_count)
    return {"success_count": success_count, "error_count": error_count}


def set_special_rates():
    """Fixed rates for featured stores in a few high-margin categories."""
    logger.info("Setting special category rates...")
    updated = 0
    for category, rate in SPECIAL_RATES:
        stores = db_models.get_featured_stores_in_category(category)
        if not stores:
            continue
        logger.info("Setting %s%% cashback for %s %s stores", rate, len(stores), category)
        for store in stores:
            if db_models.upsert_cashback_rate(store["id"], rate):
                updated += 1
                logger.info("%s: %s%% cashback", store["name"], rate)
            else:
                logger.error("Failed to set %s rate for %s", category, store["name"])
    return updated


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    action = argv[0] if argv else "sync"

    db_models.create_tables()
    if action == "sync":
        sync_cashback_rates()
    elif action == "special":
        set_special_rates()
    elif action == "all":
        sync_cashback_rates()
        set_special_rates()
    else:
        print("Usage: python sync_cashback_rates.py [sync|special|all]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
