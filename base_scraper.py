import re
from urllib.parse import quote, urljoin

from soupsieve import SelectorSyntaxError

import config
from logger import get_logger

logger = get_logger(__name__)


class BaseScraper:
    """
    Shared helpers for the coupon-site scrapers. Subclasses implement
    scrape_merchant_info() and scrape_coupons() against a parsed page.
    """

    site_key = None

    def __init__(self, site_config, viglink_key=None):
        self.config = site_config
        self.selectors = site_config["selectors"]
        self.viglink_key = viglink_key if viglink_key is not None else config.VIGLINK_API_KEY

    # --- Text & URL helpers ---

    @staticmethod
    def extract_text(element):
        if element is None:
            return ""
        return element.get_text().strip()

    @staticmethod
    def own_text(element):
        """Text of the element's first direct text node, ignoring child tags."""
        if element is None:
            return ""
        for text in element.find_all(string=True, recursive=False):
            if text.strip():
                return text.strip()
        return ""

    def extract_domain(self, url):
        if not url:
            return ""
        domain = re.sub(r"^https?://", "", url)
        domain = re.sub(r"^www\.", "", domain)
        domain = domain.split("/")[0].split(":")[0]
        domain = domain.replace("&", "")
        domain = re.sub(r"[^a-zA-Z0-9.-]", "", domain)
        domain = re.sub(r"\.+", ".", domain)
        domain = domain.strip(".")
        return self.clean_domain_name(domain)

    @staticmethod
    def clean_domain_name(domain):
        """Strips coupon/deal/offer/promo noise from scraped domains ("nikecoupons.com" -> "nike.com")."""
        if not domain:
            return ""
        domain = re.sub(r"^([a-z0-9-]+)coupons?\.", r"\1.", domain)
        domain = re.sub(r"^([a-z0-9-]+)deals?\.", r"\1.", domain)
        domain = re.sub(r"^([a-z0-9-]+)offers?\.", r"\1.", domain)
        domain = re.sub(r"^([a-z0-9-]+)promo\.", r"\1.", domain)
        domain = re.sub(r"coupons?([a-z0-9-]*\.[a-z]+)$", r"\1", domain)
        domain = re.sub(r"deals?([a-z0-9-]*\.[a-z]+)$", r"\1", domain)
        domain = re.sub(r"offers?([a-z0-9-]*\.[a-z]+)$", r"\1", domain)
        domain = re.sub(r"promo([a-z0-9-]*\.[a-z]+)$", r"\1", domain)
        return domain.strip()

    @staticmethod
    def ensure_https_url(url):
        if not url:
            return ""
        url = re.sub(r"&(?=\.com|\.net|\.org)", "", url)
        url = re.sub(r"[^a-zA-Z0-9.\-/:?&=_%#]", "", url)
        if url.startswith("https://"):
            return url
        if url.startswith("http://"):
            return "https://" + url[len("http://"):]
        return "https://" + url

    def generate_viglink_url(self, merchant_url):
        if not merchant_url:
            return ""
        encoded = quote(self.ensure_https_url(merchant_url), safe="-_.!~*'()")
        return f"https://redirect.viglink.com?u={encoded}&key={self.viglink_key}&prodOvrd=WRA&opt=true"

    @staticmethod
    def generate_coupon_description(coupon):
        store_name = coupon.get("merchant_name") or "this store"
        code = coupon.get("coupon_code")
        if code:
            return (
                "Is finding discounts from your go-to store a priority for you? You're in the perfect place. "
                f"Get {store_name} '{code}' coupon code to save big now. "
                "Get your discount by using this code at checkout. Valid only on the internet."
            )
        subtitle = coupon.get("subtitle") or "special offer"
        return (
            f"Looking for great deals from {store_name}? You've found the right place. "
            f"Take advantage of this {subtitle} to maximize your savings. "
            "This exclusive offer is available online and can help you get more for less."
        )

    @staticmethod
    def extract_subtitle(promotion_title):
        """Short discount label ("20% off", "$10 off", "free shipping", ...) or 'other'."""
        if not promotion_title:
            return "other"

        match = re.search(r"(\d+%\s*off)", promotion_title, re.IGNORECASE)
        if match:
            return match.group(1).lower()
        match = re.search(r"(\$\d+(?:\.\d+)?\s*off)", promotion_title, re.IGNORECASE)
        if match:
            return match.group(1).lower()
        match = re.search(r"([£€¥]\d+(?:\.\d+)?\s*off)", promotion_title, re.IGNORECASE)
        if match:
            return match.group(1).lower()
        match = re.search(r"(?:up\s*to\s*|save\s*)(\d+%)", promotion_title, re.IGNORECASE)
        if match:
            return match.group(1) + " off"
        match = re.search(r"save(?:\s*up\s*to)?\s*(\$\d+(?:\.\d+)?)", promotion_title, re.IGNORECASE)
        if match:
            return match.group(1) + " off"

        if re.search(r"free\s*shipping", promotion_title, re.IGNORECASE):
            return "free shipping"
        if re.search(r"buy\s*(?:one|1)\s*get\s*(?:one|1)|bogo", promotion_title, re.IGNORECASE):
            return "bogo"
        if re.search(r"free\s*(?:delivery|returns?)", promotion_title, re.IGNORECASE):
            return "free delivery"
        return "other"

    @staticmethod
    def image_src(img, page_url=""):
        if img is None:
            return ""
        src = img.get("src") or img.get("data-src") or ""
        return urljoin(page_url, src) if src and page_url else src

    # --- Element lookup ---

    def find_element_by_selectors(self, selectors, container):
        """First element matched by any selector, trying them in order."""
        if isinstance(selectors, str):
            selectors = [selectors]
        for selector in selectors:
            try:
                element = container.select_one(selector)
            except SelectorSyntaxError as e:
                logger.warning("Selector failed: %s (%s)", selector, e)
                continue
            if element is not None:
                return element
        return None

    def find_element(self, field, container):
        return self.find_element_by_selectors(self.selectors[field], container)

    def find_all_by_selectors(self, selectors, container):
        """All elements of the first selector that matches anything."""
        if isinstance(selectors, str):
            selectors = [selectors]
        for selector in selectors:
            try:
                elements = container.select(selector)
            except SelectorSyntaxError as e:
                logger.warning("Selector failed: %s (%s)", selector, e)
                continue
            if elements:
                return elements
        return []

    # --- Template ---

    def scrape_merchant_info(self, soup, page_url):
        raise NotImplementedError

    def scrape_coupons(self, soup, merchant):
        raise NotImplementedError

    def scrape_data(self, soup, page_url=""):
        """Coupons found on the page, each merged with the merchant's info."""
        try:
            merchant = self.scrape_merchant_info(soup, page_url)
            coupons = self.scrape_coupons(soup, merchant)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Error scraping %s: %s", page_url or self.config["name"], e)
            return []

        results = []
        for coupon in coupons:
            combined = dict(coupon, **merchant)
            if not (combined.get("description") or "").strip():
                combined["description"] = self.generate_coupon_description(combined)
            if combined.get("merchant_url"):
                combined["url"] = self.generate_viglink_url(combined["merchant_url"])
            results.append(combined)

        logger.info("Scraped %s coupons for %s", len(results), merchant.get("merchant_name"))
        return results
