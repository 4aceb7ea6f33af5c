import re
from urllib.parse import urlsplit

from base_scraper import BaseScraper
from logger import get_logger
from site_configs import SITE_CONFIGS

logger = get_logger(__name__)

NO_CODE_LABEL = "ACTIVATE OFFER"


def strip_grabon_sentence(description):
    """Drops a closing sentence that advertises GrabOn itself."""
    if not description:
        return description
    sentences = re.split(r"[.!?]+", description)
    while sentences and not sentences[-1].strip():
        sentences.pop()
    if len(sentences) > 1 and "GrabOn" in sentences[-1]:
        sentences.pop()
        description = ".".join(sentences).strip()
        if description and not description.endswith("."):
            description += "."
    return description


class GrabonScraper(BaseScraper):
    site_key = "grabon"

    def __init__(self, viglink_key=None):
        super().__init__(SITE_CONFIGS["grabon"], viglink_key)

    def scrape_merchant_info(self, soup, page_url):
        merchant_name = ""
        merchant_domain = ""
        merchant_url = ""

        if soup.title and soup.title.string:
            merchant_name = self.config["extract_merchant_name"](soup.title.string)
        if not merchant_name and page_url:
            match = re.search(r"/([^/]+)-coupons?/", urlsplit(page_url).path)
            if match:
                merchant_name = re.sub(r"\b\w", lambda m: m.group(0).upper(), match.group(1).replace("-", " "))

        link = self.find_element("merchant_link", soup)
        if link is not None:
            full_url = self.config["extract_target_url"](link.get("href") or "")
            merchant_domain = self.extract_domain(full_url)
            merchant_url = self.ensure_https_url(full_url)

        if not merchant_url and merchant_name:
            merchant_domain = re.sub(r"\s+", "", merchant_name.lower()) + ".com"
            merchant_url = f"https://{merchant_domain}"

        return {
            "merchant_name": merchant_name,
            "merchant_domain": merchant_domain,
            "merchant_url": merchant_url,
            "merchant_logo": self.find_merchant_logo(soup, page_url),
            "merchant_description": strip_grabon_sentence(
                self.extract_text(self.find_element("merchant_description", soup))),
        }

    def find_merchant_logo(self, soup, page_url=""):
        logo = self.image_src(self.find_element("merchant_logo", soup), page_url).strip()
        if logo and "placeholder" not in logo:
            return logo

        container = self.find_element("merchant_container", soup)
        if container is not None:
            for img in container.find_all("img"):
                src = self.image_src(img, page_url)
                if src and "placeholder" not in src and "icon" not in src:
                    return src
        return ""

    def scrape_coupons(self, soup, merchant):
        results = []
        for item in self.find_all_by_selectors(self.selectors["coupon_items"], soup):
            title_element = self.find_element("promotion_title", item)
            title = self.own_text(title_element) or self.extract_text(title_element)

            description = self.extract_text(self.find_element("description", item))

            code = ""
            code_element = self.find_element("coupon_code", item)
            if code_element is not None:
                code = (code_element.get("data-code") or self.extract_text(code_element)).strip()
            if code == NO_CODE_LABEL:
                code = ""

            if not title:
                title = f"Get Discount with Code {code}" if code else (description or "Special Offer")

            results.append({
                "promotion_title": title,
                "subtitle": self.extract_subtitle(title or description),
                "coupon_code": code,
                "description": description,
            })
        return results
