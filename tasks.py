from celery import Celery
from celery.schedules import crontab

import config
import db_models
import generate_sitemap
import sync_cashback_rates
import sync_holiday_coupons
from coupon_scrapers import scrape_and_import
from logger import get_logger
from sync_data import DataSyncService
from sync_store import StoreNotFoundError, StoreSyncOrchestrator
from sync_today import TodaySyncService

logger = get_logger(__name__)

# --- Celery Configuration ---
# The broker stores the tasks, the backend stores the results.
celery = Celery('tasks',
                broker=config.CELERY_BROKER_URL,
                backend=config.CELERY_RESULT_BACKEND)

celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=config.CELERY_TIMEZONE,
    enable_utc=True,
)

celery.conf.beat_schedule = {
    'daily-sync': {
        'task': 'tasks.sync_today_task',
        'schedule': crontab(hour=3, minute=0),
    },
    'daily-sitemap': {
        'task': 'tasks.generate_sitemap_task',
        'schedule': crontab(hour=5, minute=30),
    },
}


# --- Batch jobs ---

@celery.task(name='tasks.sync_today_task')
def sync_today_task():
    logger.info("CELERY: Starting daily sync")
    db_models.create_tables()
    exit_code = TodaySyncService().run()
    logger.info("CELERY: Daily sync finished with exit code %s", exit_code)
    return exit_code


@celery.task(name='tasks.sync_store_task')
def sync_store_task(store_name):
    logger.info("CELERY: Starting store sync for %r", store_name)
    try:
        result = StoreSyncOrchestrator(store_name).sync_store()
    except StoreNotFoundError as e:
        logger.error("CELERY: Store sync failed: %s", e)
        return {"success": False, "error": str(e)}
    return {"success": True, "store": result["store"]["alias"]}


@celery.task(name='tasks.sync_data_task')
def sync_data_task(command='all', store_name=None):
    service = DataSyncService()
    if command == 'stores':
        return service.sync_stores()
    if command == 'coupons':
        return service.sync_coupons()
    if command == 'popularity':
        return service.update_store_popularity(store_name)
    if command == 'analyze':
        return service.analyze_store_discounts(store_name)
    if command == 'cleanup':
        return service.cleanup_expired_coupons()
    return service.run_all()


@celery.task(name='tasks.sync_holiday_coupons_task')
def sync_holiday_coupons_task():
    return sync_holiday_coupons.sync_holiday_coupons()


@celery.task(name='tasks.sync_cashback_rates_task')
def sync_cashback_rates_task(include_special=True):
    result = sync_cashback_rates.sync_cashback_rates()
    if include_special:
        result["special_updated"] = sync_cashback_rates.set_special_rates()
    return result


@celery.task(name='tasks.generate_sitemap_task')
def generate_sitemap_task():
    return generate_sitemap.generate_sitemap()


# --- Scraping ---

@celery.task(name='tasks.scrape_coupon_page_task')
def scrape_coupon_page_task(url):
    logger.info("CELERY: Scraping coupon page %s", url)
    result = scrape_and_import(url)
    logger.info("CELERY: Finished %s, %s new records", url, result["inserted"])
    return result
