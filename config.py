"""
config.py
---------
Loads settings from the environment (and a local .env file) and exposes
them as module-level constants.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Database ---
DATABASE_PATH = os.getenv("COUPONMIA_DATABASE_PATH", "couponmia.db")

# --- Flask ---
SECRET_KEY = os.getenv("COUPONMIA_SECRET_KEY", "change-this-secret-key")
SESSION_TYPE = os.getenv("COUPONMIA_SESSION_TYPE", "filesystem")
SESSION_FILE_DIR = os.getenv("COUPONMIA_SESSION_DIR", "flask_session")
SITE_NAME = "CouponMia"
SITE_DOMAIN = os.getenv("COUPONMIA_SITE_DOMAIN", "https://couponmia.com")
SITEMAP_PATH = os.getenv("COUPONMIA_SITEMAP_PATH", os.path.join("static", "sitemap.xml"))

# --- Partner API (BrandReward) ---
API_BASE_URL = os.getenv("API_BASE_URL", "http://api.brandreward.com")
API_USER = os.getenv("API_USER", "")
API_KEY = os.getenv("API_KEY", "")
TEST_MODE = _flag("TEST_MODE", "false")
API_PAGE_DELAY = float(os.getenv("COUPONMIA_API_PAGE_DELAY", "1" if TEST_MODE else "10"))
SYNC_STEP_DELAY = float(os.getenv("COUPONMIA_SYNC_STEP_DELAY", "0.1"))

# --- Affiliate links ---
VIGLINK_API_KEY = os.getenv("COUPONMIA_VIGLINK_KEY", "")

# --- Background work ---
CELERY_BROKER_URL = os.getenv("COUPONMIA_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("COUPONMIA_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_TIMEZONE = os.getenv("COUPONMIA_TIMEZONE", "America/New_York")
BACKGROUND_SYNC = _flag("COUPONMIA_BACKGROUND_SYNC", "true")
SCRAPE_INTERVAL_HOURS = float(os.getenv("COUPONMIA_SCRAPE_INTERVAL_HOURS", "4"))
SCRAPE_URLS = [u.strip() for u in os.getenv("COUPONMIA_SCRAPE_URLS", "").split(",") if u.strip()]
WORKER_THREADS = int(os.getenv("COUPONMIA_WORKER_THREADS", "3"))
