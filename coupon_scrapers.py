"""
coupon_scrapers.py
------------------
Fetches a supported coupon site page with headless Chrome, runs the matching
site scraper and imports the results as featured stores + coupons.

Usage: python coupon_scrapers.py <url> [--dry-run]
"""

import json
import pprint
import sys
import time
import uuid
from collections import OrderedDict

from bs4 import BeautifulSoup
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.service import Service
from webdriver_manager.chrome import ChromeDriverManager

import db_models
from grabon_scraper import GrabonScraper
from logger import get_logger
from site_configs import detect_site
from store_analysis import generate_alias
from worthepenny_scraper import WorthepennyScraper

logger = get_logger(__name__)

SCRAPERS = {
    "worthepenny": WorthepennyScraper,
    "grabon": GrabonScraper,
}


def _chrome_options(headless=True):
    options = webdriver.ChromeOptions()
    if headless:
        options.add_argument('--headless')
    options.add_argument('--no-sandbox')
    options.add_argument('--disable-dev-shm-usage')
    options.add_argument('user-agent=Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36')
    options.add_argument('--disable-blink-features=AutomationControlled')
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.add_experimental_option('useAutomationExtension', False)
    return options


def fetch_page_html(url, headless=True, wait_seconds=5):
    """Loads `url` in Chrome and returns the rendered HTML."""
    driver = webdriver.Chrome(service=Service(ChromeDriverManager().install()),
                              options=_chrome_options(headless))
    try:
        driver.get(url)
        logger.info("Page loaded, waiting for content to render...")
        time.sleep(wait_seconds)
        return driver.page_source
    finally:
        driver.quit()


def scrape_coupon_page(url, html=None, headless=True):
    """
    Scrapes one page of a supported coupon site. Pass `html` to parse an
    already-fetched page instead of launching Chrome.
    """
    detected = detect_site(url)
    if not detected:
        logger.warning("Unsupported coupon page: %s", url)
        return []
    site_key, site = detected

    if html is None:
        logger.info("Scraping %s page %s", site["name"], url)
        try:
            html = fetch_page_html(url, headless=headless)
        except WebDriverException as e:
            logger.error("Could not load %s: %s", url, e)
            return []

    soup = BeautifulSoup(html, "html.parser")
    return SCRAPERS[site_key]().scrape_data(soup, url)


def group_by_merchant(items, source):
    """
    Groups scraped items per store alias, the same key `external_id` is built
    from. The first item sets the website; every domain seen lands in
    domains_data.
    """
    groups = OrderedDict()
    domains = {}
    for item in items:
        name = item.get("merchant_name") or ""
        alias = generate_alias(name)
        if not alias:
            continue
        domain = item.get("merchant_domain") or ""
        if alias not in groups:
            domains[alias] = []
            groups[alias] = {
                "store": {
                    "external_id": f"{source}_{alias}",
                    "name": name,
                    "alias": alias,
                    "logo_url": item.get("merchant_logo") or "",
                    "description": f"Coupons and deals for {name}",
                    "website": domain,
                    "url": item.get("url") or "",
                    "is_featured": 1,
                },
                "coupons": [],
            }
        if domain not in domains[alias]:
            domains[alias].append(domain)
        groups[alias]["coupons"].append(item)

    for alias, group in groups.items():
        group["store"]["domains_data"] = json.dumps(domains[alias])
    return groups


def import_scraped_coupons(items, source="worthepenny"):
    """
    Saves scraped coupons. Each merchant becomes (or updates) a featured store;
    coupons already present for the store, by code or by title, are skipped.
    """
    inserted = 0
    skipped = 0
    for group in group_by_merchant(items, source).values():
        store = group["store"]
        # keep the stored values when the page had nothing better
        update = {k: v for k, v in store.items() if v or k in ("is_featured",)}
        if db_models.upsert_store_by_external_id(update) == "inserted":
            inserted += 1
        store_id = db_models.get_store_external_id_map().get(store["external_id"])
        if not store_id:
            logger.error("Could not save store %s", store["name"])
            continue

        for coupon in group["coupons"]:
            code = coupon.get("coupon_code") or None
            title = coupon.get("promotion_title")
            if db_models.coupon_exists(store_id, code=code, title=title):
                logger.info("Coupon already exists: %s (%s)", title, code or "no code")
                skipped += 1
                continue

            coupon_id = db_models.insert_coupon({
                "store_id": store_id,
                "external_id": f"{source}_{uuid.uuid4().hex[:12]}",
                "title": title,
                "subtitle": coupon.get("subtitle") or "other",
                "code": code,
                "type": "code" if code else "deal",
                "discount_value": coupon.get("subtitle") or "Special Offer",
                "description": coupon.get("description") or f"{title} at {store['name']}",
                "url": coupon.get("url") or "",
                "is_active": 1,
            })
            if coupon_id:
                inserted += 1
            else:
                logger.error("Failed to insert coupon %s", title)

    logger.info("Imported %s new records (%s duplicates skipped)", inserted, skipped)
    return {"inserted": inserted, "skipped": skipped}


def scrape_and_import(url, headless=True):
    items = scrape_coupon_page(url, headless=headless)
    detected = detect_site(url)
    if not items or not detected:
        return {"inserted": 0, "skipped": 0, "scraped": 0}
    result = import_scraped_coupons(items, source=detected[0])
    result["scraped"] = len(items)
    return result


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python coupon_scrapers.py <url> [--dry-run]")
        return 1

    url = argv[0]
    if "--dry-run" in argv:
        pprint.pprint(scrape_coupon_page(url))
        return 0

    db_models.create_tables()
    pprint.pprint(scrape_and_import(url))
    return 0


if __name__ == "__main__":
    sys.exit(main())
