import json

from bs4 import BeautifulSoup

import coupon_scrapers
import db_models
from base_scraper import BaseScraper
from grabon_scraper import GrabonScraper, strip_grabon_sentence
from site_configs import SITE_CONFIGS, detect_site, grabon_merchant_name, worthepenny_merchant_name
from worthepenny_scraper import WorthepennyScraper

WORTHEPENNY_URL = "https://www.worthepenny.com/store/nike/"
GRABON_URL = "https://www.grabon.in/elevenlabs-coupons/"

WORTHEPENNY_HTML = """
<html><head><title>Nike Coupons &amp; Discounts</title></head><body>
<div id="brand_router">
  <div><a href="/go?target=https%3A%2F%2Fwww.nike.com%2Fus">Nike Promo Codes</a></div>
  <img src="/logos/nike.png">
</div>
<div id="left_unique"><div><p>Nike sells shoes.</p></div></div>
<div id="coupon_list">
  <div data-code="SAVE20"><span class="_hidden_4 worthepennycom" data-bf-ctt="20% Off Sitewide"></span></div>
  <div data-code=""><h3>Free Shipping on orders</h3></div>
</div>
</body></html>
"""

GRABON_HTML = """
<html><head><title>ElevenLabs Promo Codes: FLAT 50% OFF Discount Codes</title></head><body>
<div class="bank"><img src="https://cdn.grabon.in/elevenlabs-logo.png"></div>
<div id="gmfDesp">ElevenLabs makes voices. Shop smart with GrabOn.</div>
<div class="gcbr go-cpn-show go-cpy">
  <p>Flat 50% Off On Annual Plans</p>
  <div><span>Valid for new users only</span></div>
  <div class="gcbr-r"><span><span class="visible-lg">VOICE50</span></span></div>
</div>
<div class="gcbr go-cpn-show go-cpy">
  <p>Free Trial For 30 Days</p>
  <div><span>No card required</span></div>
  <div class="gcbr-r"><span><span class="visible-lg">ACTIVATE OFFER</span></span></div>
</div>
</body></html>
"""


def soup(html):
    return BeautifulSoup(html, "html.parser")


class TestBaseScraperHelpers:
    scraper = BaseScraper(SITE_CONFIGS["worthepenny"], viglink_key="key")

    def test_extract_domain(self):
        assert self.scraper.extract_domain("https://www.nike.com:443/path") == "nike.com"
        assert self.scraper.extract_domain("") == ""

    def test_clean_domain_name(self):
        assert BaseScraper.clean_domain_name("nikecoupons.com") == "nike.com"
        assert BaseScraper.clean_domain_name("nike.com") == "nike.com"

    def test_ensure_https_url(self):
        assert BaseScraper.ensure_https_url("http://my-shop.com/a b") == "https://my-shop.com/ab"
        assert BaseScraper.ensure_https_url("shop.com") == "https://shop.com"
        assert BaseScraper.ensure_https_url("") == ""

    def test_viglink_url(self):
        url = self.scraper.generate_viglink_url("nike.com/us")
        assert url == "https://redirect.viglink.com?u=https%3A%2F%2Fnike.com%2Fus&key=key&prodOvrd=WRA&opt=true"

    def test_extract_subtitle(self):
        assert BaseScraper.extract_subtitle("Get 25% OFF sitewide") == "25% off"
        assert BaseScraper.extract_subtitle("$10 Off orders") == "$10 off"
        assert BaseScraper.extract_subtitle("Save up to 40% today") == "40% off"
        assert BaseScraper.extract_subtitle("Free Shipping on all orders") == "free shipping"
        assert BaseScraper.extract_subtitle("BOGO on socks") == "bogo"
        assert BaseScraper.extract_subtitle("New arrivals") == "other"

    def test_bad_selector_is_skipped(self):
        page = soup("<div class='a'>x</div>")
        assert self.scraper.find_element_by_selectors(["div[", ".a"], page).text == "x"


class TestSiteConfigs:
    def test_detect_site(self):
        assert detect_site(WORTHEPENNY_URL)[0] == "worthepenny"
        assert detect_site(GRABON_URL)[0] == "grabon"
        assert detect_site("https://www.grabon.in/about") is None
        assert detect_site("https://example.com/store/x") is None

    def test_merchant_names(self):
        assert worthepenny_merchant_name("30% Off Nike Promo Codes & Coupons") == "Nike"
        assert worthepenny_merchant_name("Nike Coupons & Discounts") == "Nike"
        assert grabon_merchant_name("QuillBot Coupons") == "QuillBot"
        assert grabon_merchant_name("Save with ElevenLabs") == "ElevenLabs"


class TestWorthepennyScraper:
    """Coupon list pages on worthepenny.com."""

    def test_scrape(self):
        items = WorthepennyScraper(viglink_key="key").scrape_data(soup(WORTHEPENNY_HTML), WORTHEPENNY_URL)
        assert len(items) == 2

        first, second = items
        assert first["promotion_title"] == "20% Off Sitewide"
        assert first["subtitle"] == "20% off"
        assert first["coupon_code"] == "SAVE20"
        assert first["merchant_name"] == "Nike"
        assert first["merchant_domain"] == "nike.com"
        assert first["merchant_url"] == "https://www.nike.com/us"
        assert first["merchant_logo"] == "https://www.worthepenny.com/logos/nike.png"
        assert first["merchant_description"] == "Nike sells shoes."
        assert "'SAVE20'" in first["description"]
        assert first["url"].startswith("https://redirect.viglink.com?u=https%3A%2F%2Fwww.nike.com%2Fus&key=key")

        assert second["promotion_title"] == "Free Shipping on orders"
        assert second["coupon_code"] == ""
        assert second["subtitle"] == "free shipping"

    def test_page_without_coupons(self):
        assert WorthepennyScraper().scrape_data(soup("<html><title>Nike Coupons</title></html>")) == []


class TestGrabonScraper:
    def test_scrape(self):
        items = GrabonScraper(viglink_key="key").scrape_data(soup(GRABON_HTML), GRABON_URL)
        assert len(items) == 2

        first, second = items
        assert first["merchant_name"] == "ElevenLabs"
        assert first["merchant_domain"] == "elevenlabs.com"
        assert first["merchant_url"] == "https://elevenlabs.com"
        assert first["merchant_logo"] == "https://cdn.grabon.in/elevenlabs-logo.png"
        assert first["merchant_description"] == "ElevenLabs makes voices."
        assert first["promotion_title"] == "Flat 50% Off On Annual Plans"
        assert first["subtitle"] == "50% off"
        assert first["coupon_code"] == "VOICE50"
        assert first["description"] == "Valid for new users only"

        assert second["coupon_code"] == ""
        assert second["description"] == "No card required"

    def test_strip_grabon_sentence(self):
        assert strip_grabon_sentence("Great voices. Save more with GrabOn.") == "Great voices."
        assert strip_grabon_sentence("Only GrabOn.") == "Only GrabOn."
        assert strip_grabon_sentence("") == ""


class TestImport:
    """Scraped coupons saved as featured stores and coupons."""

    def test_scrape_coupon_page_from_html(self):
        items = coupon_scrapers.scrape_coupon_page(WORTHEPENNY_URL, html=WORTHEPENNY_HTML)
        assert [i["coupon_code"] for i in items] == ["SAVE20", ""]

    def test_unsupported_page(self):
        assert coupon_scrapers.scrape_coupon_page("https://example.com/", html="<html></html>") == []

    def test_group_by_merchant_skips_nameless_items(self):
        groups = coupon_scrapers.group_by_merchant(
            [{"merchant_name": "Nike", "merchant_domain": "nike.com"}, {"merchant_name": ""}], "worthepenny")
        assert len(groups) == 1
        store = list(groups.values())[0]["store"]
        assert store["external_id"] == "worthepenny_nike"
        assert store["is_featured"] == 1

    def test_one_store_per_merchant_across_domains(self, db):
        items = [
            {"merchant_name": "Nike", "merchant_domain": "nike.com", "promotion_title": "10% off"},
            {"merchant_name": "Nike", "merchant_domain": "nike.co.uk", "promotion_title": "UK sale"},
        ]
        groups = coupon_scrapers.group_by_merchant(items, "grabon")
        assert list(groups) == ["nike"]
        store = groups["nike"]["store"]
        assert store["website"] == "nike.com"
        assert json.loads(store["domains_data"]) == ["nike.com", "nike.co.uk"]

        assert coupon_scrapers.import_scraped_coupons(items, "grabon") == {"inserted": 3, "skipped": 0}
        nike = db_models.get_store_by_alias("nike")
        assert nike["website"] == "nike.com"
        assert {c["title"] for c in db_models.get_store_coupons(nike["id"])} == {"10% off", "UK sale"}

    def test_import_is_idempotent(self, db):
        items = coupon_scrapers.scrape_coupon_page(WORTHEPENNY_URL, html=WORTHEPENNY_HTML)
        assert coupon_scrapers.import_scraped_coupons(items, "worthepenny") == {"inserted": 3, "skipped": 0}
        assert coupon_scrapers.import_scraped_coupons(items, "worthepenny") == {"inserted": 0, "skipped": 2}

        store = db_models.get_store_by_alias("nike")
        assert store["is_featured"] == 1
        assert store["logo_url"] == "https://www.worthepenny.com/logos/nike.png"
        coupons = db_models.get_store_coupons(store["id"])
        assert {c["type"] for c in coupons} == {"code", "deal"}

    def test_scrape_and_import(self, db, monkeypatch):
        monkeypatch.setattr(coupon_scrapers, "fetch_page_html", lambda url, headless=True: GRABON_HTML)
        result = coupon_scrapers.scrape_and_import(GRABON_URL)
        assert result == {"inserted": 3, "skipped": 0, "scraped": 2}
        assert db_models.get_store_by_alias("elevenlabs")["website"] == "elevenlabs.com"
