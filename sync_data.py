"""
sync_data.py
------------
Pulls advertisers and offers from the BrandReward partner API into the
stores/coupons tables, then scores stores from what was imported.

Usage: python sync_data.py [stores|coupons|popularity|analyze|cleanup|all] [store]
"""

import json
import sys
import time
from datetime import datetime

import requests

import config
import db_models
from logger import get_logger
from store_analysis import (
    analyze_discounts,
    calculate_popularity,
    generate_alias,
    generate_rating_and_reviews,
    is_offer_active,
    parse_date,
)

logger = get_logger(__name__)

PAGED_ACTIONS = ("advertiser.advertiser_list", "links.content_feed")
MAX_CONSECUTIVE_ERRORS = 3


class BrandRewardClient:
    def __init__(self, base_url=None, user=None, key=None, test_mode=None, page_delay=None,
                 session=None, sleep=time.sleep):
        self.base_url = base_url or config.API_BASE_URL
        self.user = user if user is not None else config.API_USER
        self.key = key if key is not None else config.API_KEY
        self.test_mode = config.TEST_MODE if test_mode is None else test_mode
        if page_delay is None:
            page_delay = 1 if self.test_mode else config.API_PAGE_DELAY
        self.page_delay = page_delay
        self.session = session or requests.Session()
        self._sleep = sleep

    def build_params(self, action, page=1):
        params = {
            "act": action,
            "user": self.user,
            "key": self.key,
            "outformat": "json",
            "page": str(page),
        }
        if action in PAGED_ACTIONS:
            params["pagesize"] = "1000"
        return params

    def build_api_url(self, action, page=1):
        return requests.Request("GET", self.base_url, params=self.build_params(action, page)).prepare().url

    def fetch_page(self, action, page):
        """Parsed JSON for one page, or None when the request fails or the body isn't JSON."""
        logger.info("Fetching %s - page %s", action, page)
        try:
            response = self.session.get(self.build_api_url(action, page), timeout=60)
            text = response.text.strip()
        except requests.RequestException as e:
            logger.error("Failed to fetch page %s: %s", page, e)
            return None

        if not text.startswith(("{", "[")):
            logger.error("Page %s returned non-JSON: %s", page, text[:100])
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            logger.error("Page %s returned invalid JSON: %s", page, e)
            return None

    def fetch_all(self, action):
        records = []
        page = 1
        total_pages = 1
        errors = 0

        while True:
            result = self.fetch_page(action, page)
            if isinstance(result, dict) and result.get("response") and result.get("data") is not None:
                try:
                    total_pages = int(result["response"].get("PageTotal", 1))
                except (TypeError, ValueError):
                    total_pages = 1
                records.extend(result["data"])
                logger.info("Fetched %s records, %s pages in total", len(records), total_pages)

                if self.test_mode:
                    logger.info("Test mode: only the first page is fetched")
                    break
                page += 1
                errors = 0
            else:
                errors += 1
                logger.error("Page %s failed (%s/%s)", page, errors, MAX_CONSECUTIVE_ERRORS)
                if errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.error("%s consecutive failures, giving up", MAX_CONSECUTIVE_ERRORS)
                    break
                page += 1

            self._sleep(self.page_delay)
            if page > total_pages:
                break

        return records


def _first(value, default=None):
    if isinstance(value, list) and value:
        return value[0]
    return default


def _dumps(value):
    return json.dumps(value) if value else None


def advertiser_to_store(advertiser, now=None):
    name = advertiser.get("Name") or ""
    return {
        "external_id": str(advertiser.get("ID")),
        "name": name,
        "alias": generate_alias(name),
        "logo_url": advertiser.get("Image"),
        "description": f"{name} offers and coupons",
        "website": _first(advertiser.get("Domains"), name),
        "url": _first(advertiser.get("LinkUrl"), "#"),
        "commission_rate_data": json.dumps({"rate": advertiser["CommissionRate"]})
        if advertiser.get("CommissionRate") else None,
        "countries_data": _dumps(advertiser.get("Countries")),
        "domains_data": _dumps(advertiser.get("Domains")),
        "commission_model_data": _dumps(advertiser.get("CommissionModel")),
        "category": _first(advertiser.get("Category")),
        "updated_at": (now or datetime.now()).isoformat(),
    }


def offer_to_coupon(offer, store_id, now=None):
    code = (offer.get("CouponCode") or "").strip()
    coupon_type = "code" if code else "deal"
    title = offer.get("Title") or "Special Offer"
    return {
        "store_id": store_id,
        "external_id": str(offer.get("LinkID")),
        "title": title,
        "subtitle": offer.get("KeyTitle") or "",
        "code": offer.get("CouponCode") if coupon_type == "code" else None,
        "type": coupon_type,
        "discount_value": offer.get("KeyTitle") or "",
        "description": offer.get("Description") or offer.get("Title") or "",
        "url": offer.get("LinkUrl"),
        "expires_at": parse_date(offer.get("EndDate")),
        "is_active": int(is_offer_active(offer.get("StartDate"), offer.get("EndDate"), now)),
        "countries": offer.get("ShippingCountry") or None,
        "updated_at": (now or datetime.now()).isoformat(),
    }


class DataSyncService:
    def __init__(self, client=None, sleep=time.sleep, rng=None):
        self.client = client or BrandRewardClient()
        self._sleep = sleep
        self._rng = rng

    # --- Partner feed import ---

    def sync_stores(self):
        logger.info("Syncing advertisers...")
        advertisers = self.client.fetch_all("advertiser.advertiser_list")
        logger.info("Received %s advertisers", len(advertisers))

        success_count = 0
        error_count = 0
        for advertiser in advertisers:
            try:
                result = db_models.upsert_store_by_external_id(advertiser_to_store(advertiser))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Failed to process advertiser %s: %s", advertiser.get("Name"), e)
                result = None
            if result is None:
                error_count += 1
                continue
            success_count += 1
            if success_count % 10 == 0:
                logger.info("Synced %s stores", success_count)

        logger.info("Stores synced: %s ok, %s failed", success_count, error_count)
        return {"success_count": success_count, "error_count": error_count}

    def sync_coupons(self):
        logger.info("Syncing offers...")
        offers = self.client.fetch_all("links.content_feed")
        logger.info("Received %s offers", len(offers))

        store_map = db_models.get_store_external_id_map()
        success_count = 0
        error_count = 0
        skipped_count = 0
        for offer in offers:
            store_id = store_map.get(str(offer.get("AdvertiserID")))
            if not store_id:
                skipped_count += 1
                continue
            try:
                result = db_models.upsert_coupon_by_external_id(offer_to_coupon(offer, store_id))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Failed to process offer %s: %s", offer.get("Title"), e)
                result = None
            if result is None:
                error_count += 1
                continue
            success_count += 1
            if success_count % 50 == 0:
                logger.info("Synced %s coupons", success_count)

        logger.info("Coupons synced: %s ok, %s failed, %s skipped", success_count, error_count, skipped_count)
        return {"success_count": success_count, "error_count": error_count, "skipped_count": skipped_count}

    # --- Scoring ---

    def update_store_popularity(self, store_name=None):
        """Marks stores featured when their popularity score reaches 50."""
        if store_name:
            logger.info("Updating popularity for stores matching %r...", store_name)
            stores = db_models.find_stores(store_name)
            if not stores:
                logger.error("No store matches %r", store_name)
                return None
        else:
            logger.info("Updating store popularity...")
            stores = db_models.get_all_stores()

        logger.info("Scoring %s stores", len(stores))
        updated_count = 0
        popular_count = 0
        for store in stores:
            coupons_count = store.get("active_offers_count") or 0
            popularity = calculate_popularity(store.get("logo_url") or "", coupons_count)
            if not db_models.update_store(store["id"], is_featured=int(popularity["is_popular"])):
                logger.error("Failed to update popularity for %s", store["name"])
                continue
            updated_count += 1
            if popularity["is_popular"]:
                popular_count += 1
                logger.info("Popular store: %s (score %s, %s offers)",
                            store["name"], popularity["score"], coupons_count)

        logger.info("Popularity updated for %s stores, %s popular", updated_count, popular_count)
        return {"updated_count": updated_count, "popular_count": popular_count}

    def analyze_store_discounts(self, store_name=None):
        """Recomputes discount analysis, active offer count, rating and review count."""
        if store_name:
            logger.info("Analyzing discounts for stores matching %r...", store_name)
        else:
            logger.info("Analyzing store discounts...")

        stores = db_models.get_stores_with_active_coupons(store_name)
        if store_name and not stores:
            logger.error("No store matches %r", store_name)
            return None
        logger.info("%s stores have active coupons", len(stores))

        processed_count = 0
        for store in stores:
            discount_values = db_models.get_active_discount_values(store["id"])
            if not discount_values:
                continue

            analysis = analyze_discounts(discount_values)
            if self._rng is not None:
                rating, review_count = generate_rating_and_reviews(len(discount_values), self._rng)
            else:
                rating, review_count = generate_rating_and_reviews(len(discount_values))

            updated = db_models.update_store(
                store["id"],
                discount_analysis=analysis,
                active_offers_count=len(discount_values),
                rating=rating,
                review_count=review_count,
            )
            if not updated:
                logger.error("Failed to store discount analysis for %s", store["name"])
                continue

            processed_count += 1
            logger.info("%s: %s active offers, rating %s (%s reviews)",
                        store["name"], len(discount_values), rating, review_count)
            if analysis["max_percent"] and analysis["max_percent"] >= 50:
                logger.info("  high discount store: up to %s%%", analysis["max_percent"])
            if analysis["best_offer"]:
                logger.info("  best offer: %s", analysis["best_offer"])
            self._sleep(config.SYNC_STEP_DELAY)

        logger.info("Discount analysis finished for %s stores", processed_count)
        return {"processed_count": processed_count}

    def cleanup_expired_coupons(self):
        logger.info("Deactivating expired coupons...")
        count = db_models.deactivate_expired_coupons()
        logger.info("Deactivated %s expired coupons", count)
        return count

    def sync_all(self):
        logger.info("Starting full sync...")
        started = time.time()

        stores = self.sync_stores()
        coupons = self.sync_coupons()
        popularity = self.update_store_popularity() or {}

        total_time = round(time.time() - started, 2)
        logger.info("Full sync finished in %ss", total_time)
        logger.info("Stores: %s ok, %s failed", stores["success_count"], stores["error_count"])
        logger.info("Coupons: %s ok, %s failed, %s skipped",
                    coupons["success_count"], coupons["error_count"], coupons["skipped_count"])
        logger.info("Popularity: %s updated, %s popular",
                    popularity.get("updated_count", 0), popularity.get("popular_count", 0))
        return {"stores": stores, "coupons": coupons, "popularity": popularity, "total_time": total_time}

    def run_all(self):
        """`sync_all` followed by cleanup, discount analysis and a final popularity pass."""
        result = self.sync_all()
        result["expired_count"] = self.cleanup_expired_coupons()
        # active_offers_count must be fresh before popularity is rescored
        result["analysis"] = self.analyze_store_discounts()
        result["popularity"] = self.update_store_popularity() or {}
        return result


COMMANDS = ("stores", "coupons", "popularity", "analyze", "cleanup", "all")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "all"
    store_name = argv[1] if len(argv) > 1 else None

    if command not in COMMANDS:
        print(f"Usage: python sync_data.py [{'|'.join(COMMANDS)}] [store]")
        return 1

    db_models.create_tables()
    service = DataSyncService()
    if command == "stores":
        service.sync_stores()
    elif command == "coupons":
        service.sync_coupons()
    elif command == "popularity":
        service.update_store_popularity(store_name)
    elif command == "analyze":
        service.analyze_store_discounts(store_name)
    elif command == "cleanup":
        service.cleanup_expired_coupons()
    else:
        service.run_all()
    return 0


if __name__ == "__main__":
    sys.exit(main())
