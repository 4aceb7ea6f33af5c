"""
sync_store.py
-------------
Store sync triggered by the webhook: validates the store, refreshes its
derived data and writes an audit trail to sync_logs.

Usage: python sync_store.py "<store-name>"
"""

import sys

import db_models
from logger import get_logger
from similar_stores import SimilarStoresAnalyzer
from sync_data import DataSyncService
from sync_today import run_step

logger = get_logger(__name__)

SYNC_TYPE = "store_webhook"


class StoreNotFoundError(Exception):
    pass


class StoreSyncOrchestrator:
    def __init__(self, store_name, sync_service=None, analyzer=None):
        self.store_name = store_name
        self.log_prefix = f"[Store Sync: {store_name}]"
        self.sync_service = sync_service or DataSyncService()
        self.analyzer = analyzer or SimilarStoresAnalyzer()

    def log(self, message, level="info"):
        if level == "error":
            logger.error("%s %s", self.log_prefix, message)
        elif level == "warning":
            logger.warning("%s %s", self.log_prefix, message)
        else:
            logger.info("%s %s", self.log_prefix, message)
        db_models.add_sync_log(
            SYNC_TYPE,
            "error" if level == "error" else "running",
            details={"store": self.store_name, "message": message, "type": level},
        )

    def execute_step(self, description, func, arg):
        self.log(f"Starting: {description}")
        success, result, error = run_step(func, arg)
        if success:
            self.log(f"Completed: {description}")
            return {"success": True, "result": result}
        self.log(f"Error in {description}: {error}", "error")
        return {"success": False, "error": error}

    def validate_store(self):
        """The store matching the name (an exact name or alias match wins over a partial one)."""
        self.log("Validating store exists in database")
        matches = db_models.find_stores(self.store_name)
        if not matches:
            message = f'Store "{self.store_name}" not found in database'
            self.log(f"Store validation failed: {message}", "error")
            raise StoreNotFoundError(message)

        wanted = self.store_name.lower()
        exact = [s for s in matches if s["name"].lower() == wanted or s["alias"].lower() == wanted]
        store = (exact or matches)[0]
        self.log(f"Found store: {store['name']} ({store['alias']})")
        return store

    def sync_store(self):
        self.log("Starting store synchronization process")
        try:
            store = self.validate_store()
        except StoreNotFoundError as e:
            self.log(f"Store synchronization failed: {e}", "error")
            db_models.add_sync_log(SYNC_TYPE, "error", success_count=0, error_count=1,
                                   details={"store": self.store_name, "error": str(e)})
            raise

        steps = [
            self.execute_step("Analyze store data", self.sync_service.analyze_store_discounts, store["alias"]),
            self.execute_step("Update store popularity", self.sync_service.update_store_popularity,
                              store["alias"]),
            self.execute_step("Analyze similar stores", self.analyzer.analyze_single, store["alias"]),
        ]

        self.log("Store synchronization completed")
        db_models.add_sync_log(SYNC_TYPE, "completed", success_count=1, error_count=0,
                               details={"store": self.store_name, "alias": store["alias"]})
        return {"success": True, "store": store, "steps": steps}


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print('Usage: python sync_store.py "store-name"')
        return 1

    db_models.create_tables()
    try:
        StoreSyncOrchestrator(argv[0]).sync_store()
    except StoreNotFoundError as e:
        logger.error("Store sync failed: %s", e)
        return 1
    logger.info("Store sync completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
