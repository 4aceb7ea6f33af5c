"""
site_configs.py
---------------
Per-site selector sets for the third-party coupon pages we scrape. Each
selector field is a list tried in order: the structural selector for the
current page layout first, then looser fallbacks.
"""

import re
from urllib.parse import unquote


def worthepenny_target_url(url):
    """Worthepenny outbound links carry the merchant URL in a `target` parameter."""
    if not url:
        return ""
    match = re.search(r"[?&]target=([^&]+)", url)
    return unquote(match.group(1)) if match else url


def worthepenny_merchant_name(title_text):
    if not title_text:
        return ""
    match = re.match(
        r"^\d+%?\s*Off\s+(.+?)\s+(?:Promo Codes?|Discount Codes?|Coupons?|Discounts?)"
        r"(?:\s*&\s*(?:Discounts?|Coupons?))?",
        title_text, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    match = re.match(
        r"^(.+?)\s+(?:Promo Codes?|Discount Codes?|Coupons?|Discounts?)(?:\s*&\s*(?:Discounts?|Coupons?))?",
        title_text, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    return title_text.strip()


def grabon_target_url(url):
    return url or ""


def grabon_merchant_name(title_text):
    if not title_text:
        return ""
    # "ElevenLabs Promo Codes: FLAT 50% OFF Discount Codes"
    match = re.match(r"^(.+?)\s+(?:Promo Codes?|Discount Codes?|Coupon Codes?)(?:\s*[:：].*)?",
                     title_text, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    # "QuillBot Coupons"
    match = re.match(r"^(.+?)\s+(?:Coupons?|Offers?|Deals?|Discounts?)", title_text, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    # "Save with ElevenLabs"
    match = re.match(r"^Save\s+with\s+(.+)", title_text, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    return title_text.strip()


SITE_CONFIGS = {
    "worthepenny": {
        "name": "Worthepenny",
        "domains": ["worthepenny.com"],
        "url_patterns": ["/coupon/", "/store/"],
        "selectors": {
            "coupon_container": "#coupon_list",
            "coupon_items": "div[data-code]",
            "coupon_code_attr": "data-code",
            "merchant_container": "#brand_router",
            "merchant_link": "div a",
            "merchant_logo": [
                "#brand_router img",
                ".merchant-logo img",
                ".brand-logo img",
                ".store-logo img",
                ".logo img",
            ],
            "merchant_description": [
                "#left_unique > div:nth-of-type(1) > p:nth-of-type(1)",
                "#left_unique > div:first-child > p:first-child",
                "#left_unique p:first-of-type",
                ".store-description",
                ".merchant-description",
                ".brand-description",
            ],
            "promotion_title": [
                "._hidden_4.worthepennycom[data-bf-ctt]",
                "._hidden_4[data-bf-ctt]",
                ".worthepennycom[data-bf-ctt]",
                "[data-bf-ctt]",
                ".coupon-title",
                ".offer-title",
                ".deal-title",
                "h3",
                "h4",
            ],
            "promotion_title_attr": "data-bf-ctt",
        },
        "extract_target_url": worthepenny_target_url,
        "extract_merchant_name": worthepenny_merchant_name,
    },
    "grabon": {
        "name": "GrabOn",
        "domains": ["grabon.in"],
        "url_patterns": ["-coupons/", "/coupons/", "/offers/"],
        "selectors": {
            "coupon_items": ['[class="gcbr go-cpn-show go-cpy"]', ".gc-box, .gcbr"],
            "merchant_container": [".bank", ".merchant-info"],
            "merchant_link": ['a[href*="visit"]', ".merchant-link"],
            "merchant_logo": [
                "#gBody > main > section:nth-of-type(1) > div > div:nth-of-type(1) > img",
                ".bank img",
                ".merchant-logo img",
                ".gcbl img",
                ".logo img",
                'img[alt*="logo"]',
            ],
            "merchant_description": [
                "#gmfDesp",
                ".store-description",
                ".merchant-description",
                ".brand-description",
                ".description",
                "p.desc",
            ],
            # relative to each coupon item
            "promotion_title": [":scope > p:nth-of-type(1)", ".gcbr > p", ".coupon-title", ".offer-title"],
            "description": [":scope > div:nth-of-type(1) > span", ".description", ".offer-desc"],
            "coupon_code": [
                ':scope > div[class="gcbr-r"] > span > span[class="visible-lg"]',
                ".coupon-code",
                ".code",
                "[data-code]",
            ],
        },
        "extract_target_url": grabon_target_url,
        "extract_merchant_name": grabon_merchant_name,
    },
}


def detect_site(url):
    """(site key, config) for a URL on a supported site, or None."""
    if not url:
        return None
    for key, site in SITE_CONFIGS.items():
        matches_domain = any(domain in url for domain in site["domains"])
        matches_pattern = any(pattern in url for pattern in site["url_patterns"])
        if matches_domain and matches_pattern:
            return key, site
    return None
