import random
import re
from datetime import datetime

# (minimum active offers, points)
_OFFER_POINTS = [(50, 90), (30, 80), (20, 70), (15, 60), (10, 50), (5, 40), (3, 30), (2, 20), (1, 10)]

# (minimum active offers, base rating, review count floor, review count spread)
_RATING_TIERS = [
    (50, 4.3, 800, 500),
    (30, 4.1, 500, 300),
    (20, 3.9, 300, 200),
    (15, 3.7, 200, 150),
    (10, 3.5, 120, 100),
    (5, 3.3, 60, 80),
    (2, 3.1, 25, 50),
    (1, 3.0, 10, 30),
]

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%m/%d/%Y %H:%M:%S")


# --- Aliases ---

def generate_alias(name):
    """URL alias for a store synced from the partner feed."""
    return re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")


def slugify_store_name(name):
    """URL alias for a store created from a user coupon submission."""
    alias = re.sub(r"[^a-z0-9\s]", "", (name or "").lower())
    alias = re.sub(r"\s+", "-", alias)
    alias = re.sub(r"--+", "-", alias)
    return alias.strip("-")


# --- Popularity & ratings ---

def calculate_popularity(logo_url, coupons_count=0):
    """Scores a store out of 100; 50 or more makes it a featured store."""
    score = 0
    has_logo = bool(logo_url)
    if has_logo:
        score += 8
        if "https://" in logo_url or ".png" in logo_url or ".jpg" in logo_url:
            score += 2

    for minimum, points in _OFFER_POINTS:
        if coupons_count >= minimum:
            score += points
            break

    score = min(score, 100)
    return {
        "score": score,
        "is_popular": score >= 50,
        "details": {"has_logo": has_logo, "coupons_count": coupons_count},
    }


def generate_rating_and_reviews(active_offers_count, rng=random):
    """Rating (3.0-4.5) and review count scaled by how many offers a store runs."""
    rating = 3.0
    review_count = 0
    for minimum, base, floor, spread in _RATING_TIERS:
        if active_offers_count >= minimum:
            rating = base + rng.random() * 0.2
            review_count = floor + rng.randrange(spread)
            break

    rating = max(3.0, min(4.5, rating))
    return int(rating * 10 + 0.5) / 10, review_count


# --- Discount parsing ---

def parse_discount(discount_text):
    if not discount_text:
        return None

    text = re.sub(r"\s+", " ", discount_text.lower()).strip()

    match = re.search(r"(\d+)%\s*off", text)
    if match:
        return {"type": "percent", "value": int(match.group(1)), "original": discount_text}

    match = re.search(r"([£$€¥]?\d+(?:\.\d{2})?)\s*off", text)
    if match:
        value = float(re.sub(r"[£$€¥]", "", match.group(1)))
        return {"type": "amount", "value": value, "original": discount_text}

    match = re.search(r"buy\s*(\d+)\s*get\s*(\d+)", text)
    if match:
        return {"type": "bxgy", "buy": int(match.group(1)), "get": int(match.group(2)),
                "original": discount_text}

    match = re.search(r"up\s*to\s*(\d+)%", text)
    if match:
        return {"type": "upto_percent", "value": int(match.group(1)), "original": discount_text}

    return {"type": "other", "original": discount_text}


def get_best_offer(discounts):
    """Percent offers beat fixed amounts, which beat everything else."""
    if not discounts:
        return None

    percent = [d for d in discounts if d["type"] in ("percent", "upto_percent")]
    if percent:
        return max(percent, key=lambda d: d["value"])["original"]

    amounts = [d for d in discounts if d["type"] == "amount"]
    if amounts:
        return max(amounts, key=lambda d: d["value"])["original"]

    return discounts[0]["original"]


def analyze_discounts(discount_values, now=None):
    """Summary statistics over the discount_value strings of a store's active offers."""
    discounts = []
    percents = []
    amounts = []
    for value in discount_values:
        parsed = parse_discount(value)
        if not parsed:
            continue
        discounts.append(parsed)
        if parsed["type"] in ("percent", "upto_percent"):
            percents.append(parsed["value"])
        elif parsed["type"] == "amount":
            amounts.append(parsed["value"])

    discount_types = []
    for d in discounts:
        if d["type"] not in discount_types:
            discount_types.append(d["type"])

    return {
        "total_offers": len(discount_values),
        "parsed_discounts": len(discounts),
        "min_percent": min(percents) if percents else None,
        "max_percent": max(percents) if percents else None,
        "avg_percent": int(sum(percents) / len(percents) + 0.5) if percents else None,
        "min_amount": min(amounts) if amounts else None,
        "max_amount": max(amounts) if amounts else None,
        "discount_types": discount_types,
        "best_offer": get_best_offer(discounts),
        "analyzed_at": (now or datetime.now()).isoformat(),
    }


# --- Dates ---

def parse_date(value):
    """ISO-8601 string for a feed date, or None when it cannot be parsed."""
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None).isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).isoformat()
        except ValueError:
            continue
    return None


def is_offer_active(start_date, end_date, now=None):
    now = now or datetime.now()
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start and now < datetime.fromisoformat(start):
        return False
    if end and now > datetime.fromisoformat(end):
        return False
    return True
