from base_scraper import BaseScraper
from logger import get_logger
from site_configs import SITE_CONFIGS

logger = get_logger(__name__)


class WorthepennyScraper(BaseScraper):
    site_key = "worthepenny"

    def __init__(self, viglink_key=None):
        super().__init__(SITE_CONFIGS["worthepenny"], viglink_key)

    def scrape_merchant_info(self, soup, page_url):
        merchant_name = ""
        merchant_domain = ""
        merchant_url = ""

        container = soup.select_one(self.selectors["merchant_container"])
        if container is not None:
            brand_link = container.select_one(self.selectors["merchant_link"])
            if brand_link is not None:
                full_url = self.config["extract_target_url"](brand_link.get("href") or "")
                merchant_domain = self.extract_domain(full_url)
                merchant_url = self.ensure_https_url(full_url)
                merchant_name = self.extract_text(brand_link)

        if merchant_name:
            merchant_name = self.config["extract_merchant_name"](merchant_name)
        if not merchant_name and soup.title and soup.title.string:
            merchant_name = self.config["extract_merchant_name"](soup.title.string)

        return {
            "merchant_name": merchant_name,
            "merchant_domain": merchant_domain,
            "merchant_url": merchant_url,
            "merchant_logo": self.find_merchant_logo(soup, page_url),
            "merchant_description": self.extract_text(self.find_element("merchant_description", soup)),
        }

    def find_merchant_logo(self, soup, page_url=""):
        logo = self.image_src(self.find_element("merchant_logo", soup), page_url)
        if logo and "placeholder" not in logo:
            return logo

        brand_router = soup.select_one(self.selectors["merchant_container"])
        if brand_router is not None:
            for img in brand_router.find_all("img"):
                src = self.image_src(img, page_url)
                if src and "placeholder" not in src and "icon" not in src:
                    return src
        return ""

    def scrape_coupons(self, soup, merchant):
        container = soup.select_one(self.selectors["coupon_container"])
        if container is None:
            logger.info("Coupon container not found")
            return []

        merchant_name = merchant.get("merchant_name") or ""
        attr = self.selectors["promotion_title_attr"]
        results = []
        for coupon_div in container.select(self.selectors["coupon_items"]):
            code = coupon_div.get(self.selectors["coupon_code_attr"]) or ""

            title = ""
            title_element = self.find_element("promotion_title", coupon_div)
            if title_element is not None:
                if title_element.has_attr(attr):
                    title = title_element.get(attr) or ""
                else:
                    title = self.extract_text(title_element)
                title = title.strip("\n").strip()

            if not title:
                title = f"{merchant_name} Coupon Code: {code}" if code else f"{merchant_name} Special Offer"

            results.append({
                "promotion_title": title,
                "subtitle": self.extract_subtitle(title),
                "coupon_code": code,
            })
        return results
