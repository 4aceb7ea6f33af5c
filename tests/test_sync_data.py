import json
import random
from datetime import datetime

import requests

import db_models
import sync_data
from sync_data import BrandRewardClient, DataSyncService, advertiser_to_store, offer_to_coupon


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeSession:
    """Serves queued response bodies; an Exception instance is raised instead."""

    def __init__(self, bodies):
        self.bodies = list(bodies)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        body = self.bodies.pop(0)
        if isinstance(body, Exception):
            raise body
        return FakeResponse(body)


def page(records, total_pages=1):
    return json.dumps({"response": {"PageTotal": total_pages}, "data": records})


def make_client(bodies, test_mode=False):
    sleeps = []
    client = BrandRewardClient(base_url="http://api.example.com", user="u", key="k", test_mode=test_mode,
                               page_delay=0, session=FakeSession(bodies), sleep=sleeps.append)
    return client, sleeps


class TestBrandRewardClient:
    def test_params_for_paged_actions(self):
        client, _ = make_client([])
        params = client.build_params("links.content_feed", 3)
        assert params == {"act": "links.content_feed", "user": "u", "key": "k", "outformat": "json",
                          "page": "3", "pagesize": "1000"}
        assert "pagesize" not in client.build_params("account.info")

    def test_api_url(self):
        client, _ = make_client([])
        url = client.build_api_url("advertiser.advertiser_list", 2)
        assert url.startswith("http://api.example.com")
        assert "act=advertiser.advertiser_list" in url
        assert "page=2" in url

    def test_fetches_every_page(self):
        client, sleeps = make_client([page([{"ID": 1}], 2), page([{"ID": 2}], 2)])
        assert client.fetch_all("advertiser.advertiser_list") == [{"ID": 1}, {"ID": 2}]
        assert len(client.session.urls) == 2
        assert len(sleeps) == 2

    def test_test_mode_fetches_one_page(self):
        client, _ = make_client([page([{"ID": 1}], 5)], test_mode=True)
        assert client.fetch_all("advertiser.advertiser_list") == [{"ID": 1}]
        assert len(client.session.urls) == 1

    def test_gives_up_after_consecutive_errors(self):
        bodies = [page([{"ID": 1}], 6), "<html>error</html>", "{not json", requests.ConnectionError("down")]
        client, _ = make_client(bodies)
        assert client.fetch_all("links.content_feed") == [{"ID": 1}]
        assert len(client.session.urls) == 4

    def test_failed_page_is_skipped(self):
        client, _ = make_client([page([{"ID": 1}], 3), "oops", page([{"ID": 3}], 3)])
        assert client.fetch_all("links.content_feed") == [{"ID": 1}, {"ID": 3}]

    def test_fetch_page_handles_request_errors(self):
        client, _ = make_client([requests.Timeout("slow")])
        assert client.fetch_page("links.content_feed", 1) is None


class TestRecordMapping:
    """Partner feed records to table rows."""

    def test_advertiser_to_store(self):
        store = advertiser_to_store({
            "ID": 77, "Name": "Nike Store", "Image": "logo.png", "Domains": ["nike.com", "nike.de"],
            "LinkUrl": ["https://track/nike"], "CommissionRate": "8%", "Countries": ["US"],
            "Category": ["Fashion"],
        }, now=datetime(2024, 1, 1))
        assert store["external_id"] == "77"
        assert store["alias"] == "nike-store"
        assert store["website"] == "nike.com"
        assert store["url"] == "https://track/nike"
        assert json.loads(store["commission_rate_data"]) == {"rate": "8%"}
        assert json.loads(store["domains_data"]) == ["nike.com", "nike.de"]
        assert store["category"] == "Fashion"
        assert store["commission_model_data"] is None

    def test_advertiser_without_links(self):
        store = advertiser_to_store({"ID": 1, "Name": "Bare"})
        assert store["website"] == "Bare"
        assert store["url"] == "#"
        assert store["commission_rate_data"] is None

    def test_offer_with_code(self):
        coupon = offer_to_coupon({
            "LinkID": 5, "Title": "20% off", "KeyTitle": "20% off", "CouponCode": "SAVE20",
            "EndDate": "2099-01-01", "LinkUrl": "https://track/5",
        }, store_id=3)
        assert coupon["type"] == "code"
        assert coupon["code"] == "SAVE20"
        assert coupon["expires_at"] == "2099-01-01T00:00:00"
        assert coupon["is_active"] == 1
        assert coupon["description"] == "20% off"

    def test_expired_deal(self):
        coupon = offer_to_coupon({"LinkID": 6, "EndDate": "2020-01-01"}, store_id=3, now=datetime(2024, 1, 1))
        assert coupon["type"] == "deal"
        assert coupon["code"] is None
        assert coupon["title"] == "Special Offer"
        assert coupon["is_active"] == 0


class FakeFeedClient:
    def __init__(self, advertisers=(), offers=()):
        self.feeds = {"advertiser.advertiser_list": list(advertisers), "links.content_feed": list(offers)}

    def fetch_all(self, action):
        return self.feeds[action]


ADVERTISERS = [
    {"ID": 1, "Name": "Nike", "Image": "https://cdn/nike.png", "Domains": ["nike.com"]},
    {"ID": 2, "Name": "Adidas", "Domains": ["adidas.com"]},
]

OFFERS = [
    {"LinkID": 10, "AdvertiserID": 1, "Title": "30% off shoes", "KeyTitle": "30% off"},
    {"LinkID": 11, "AdvertiserID": 1, "Title": "$10 off", "KeyTitle": "$10 off", "CouponCode": "TEN"},
    {"LinkID": 12, "AdvertiserID": 99, "Title": "Orphan offer"},
]


class TestDataSyncService:
    def make_service(self):
        return DataSyncService(client=FakeFeedClient(ADVERTISERS, OFFERS), sleep=lambda s: None,
                               rng=random.Random(1))

    def test_sync_stores_and_coupons(self, db):
        service = self.make_service()
        assert service.sync_stores() == {"success_count": 2, "error_count": 0}
        assert service.sync_coupons() == {"success_count": 2, "error_count": 0, "skipped_count": 1}

        nike = db_models.get_store_by_alias("nike")
        coupons = db_models.get_store_coupons(nike["id"])
        assert {c["title"] for c in coupons} == {"30% off shoes", "$10 off"}

        # a second run updates in place
        service.sync_stores()
        service.sync_coupons()
        assert len(db_models.get_all_stores()) == 2
        assert len(db_models.get_store_coupons(nike["id"])) == 2

    def test_analyze_store_discounts(self, db):
        service = self.make_service()
        service.sync_stores()
        service.sync_coupons()

        assert service.analyze_store_discounts() == {"processed_count": 1}
        nike = db_models.get_store_by_alias("nike")
        assert nike["active_offers_count"] == 2
        assert nike["discount_analysis"]["best_offer"] == "30% off"
        assert 3.0 <= nike["rating"] <= 4.5
        assert nike["review_count"] > 0

    def test_analyze_unknown_store(self, db):
        assert self.make_service().analyze_store_discounts("nope") is None

    def test_update_store_popularity(self, db, make_store):
        make_store("Busy", logo_url="https://cdn/busy.png", active_offers_count=12)
        make_store("Quiet", active_offers_count=1)
        result = self.make_service().update_store_popularity()
        assert result == {"updated_count": 2, "popular_count": 1}
        assert db_models.get_store_by_alias("busy")["is_featured"] == 1
        assert db_models.get_store_by_alias("quiet")["is_featured"] == 0

    def test_popularity_for_unknown_store(self, db):
        assert self.make_service().update_store_popularity("nope") is None

    def test_cleanup_expired_coupons(self, db, make_store, make_coupon):
        store_id = make_store("Nike")
        make_coupon(store_id, expires_at="2001-01-01T00:00:00")
        assert self.make_service().cleanup_expired_coupons() == 1

    def test_sync_all(self, db):
        result = self.make_service().sync_all()
        assert result["stores"]["success_count"] == 2
        assert result["coupons"]["skipped_count"] == 1
        assert result["popularity"]["updated_count"] == 2

    def test_run_all_refreshes_analysis_after_sync(self, db, make_coupon):
        service = self.make_service()
        service.sync_stores()
        nike = db_models.get_store_by_alias("nike")
        make_coupon(nike["id"], "Old deal", external_id="old-1", expires_at="2001-01-01T00:00:00")

        result = service.run_all()
        assert result["stores"]["success_count"] == 2
        assert result["expired_count"] == 1
        assert result["analysis"] == {"processed_count": 1}
        assert result["popularity"]["updated_count"] == 2
        assert db_models.get_store_by_alias("nike")["active_offers_count"] == 2


def test_main_rejects_unknown_command():
    assert sync_data.main(["bogus"]) == 1
