"""
sync_holiday_coupons.py
-----------------------
Tags active coupons with the holidays their title or description mentions,
so holiday landing pages can list them.

Usage: python sync_holiday_coupons.py [sync|seed]
"""

import re
import sys
import time
from collections import Counter
from datetime import date

import db_models
from holiday_calendar import SHOPPING, get_holidays_for_year
from logger import get_logger

logger = get_logger(__name__)

BATCH_SIZE = 1000

HOLIDAYS = [
    # Federal
    ("New Year's Day", ["new year", "new years"]),
    ("Martin Luther King Jr. Day", ["mlk day", "martin luther king"]),
    ("Presidents' Day", ["presidents day", "president day"]),
    ("Memorial Day", ["memorial day"]),
    ("Independence Day", ["independence day", "july 4th", "4th of july"]),
    ("Labor Day", ["labor day"]),
    ("Columbus Day", ["columbus day"]),
    ("Veterans Day", ["veterans day", "veteran day"]),
    ("Thanksgiving Day", ["thanksgiving", "turkey day"]),
    ("Christmas Day", ["christmas", "xmas", "holiday season"]),
    ("Juneteenth", ["juneteenth"]),
    # Observances
    ("Valentine's Day", ["valentine", "valentines", "love day"]),
    ("St. Patrick's Day", ["st patrick", "saint patrick", "irish"]),
    ("Easter Sunday", ["easter", "easter sunday"]),
    ("Mother's Day", ["mother's day", "mothers day", "mom day"]),
    ("Father's Day", ["father's day", "fathers day", "dad day"]),
    ("Halloween", ["halloween", "trick or treat", "spooky"]),
    ("Women's Equality Day", ["women's equality", "womens equality"]),
    ("April Fools' Day", ["april fool", "april fools"]),
    ("Tax Day", ["tax day"]),
    ("Earth Day", ["earth day", "environmental"]),
    ("Cinco de Mayo", ["cinco de mayo", "5th of may"]),
    # Shopping events
    ("Black Friday", ["black friday", "blackfriday"]),
    ("Cyber Monday", ["cyber monday", "cybermonday"]),
    ("Boxing Day", ["boxing day"]),
    # Seasons
    ("Back to School", ["back to school", "school season"]),
    ("Summer Sale", ["summer", "summer sale"]),
    ("Spring Sale", ["spring", "spring sale"]),
    ("Winter Sale", ["winter", "winter sale"]),
    ("Fall Sale", ["fall", "autumn", "fall sale"]),
    ("End of Year", ["end of year", "year end"]),
]

# Seasonal events have no calendar date but still get a holidays row.
SEASONAL_EVENTS = ["Back to School", "Summer Sale", "Spring Sale", "Winter Sale", "Fall Sale", "End of Year"]


def create_search_patterns():
    patterns = []
    for name, variations in HOLIDAYS:
        for term in [name] + variations:
            patterns.append((name, re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)))
    return patterns


SEARCH_PATTERNS = create_search_patterns()


def find_holiday_matches(text, patterns=SEARCH_PATTERNS):
    """At most one match per holiday, in keyword-table order."""
    if not text:
        return []
    matches = []
    found = set()
    for holiday, pattern in patterns:
        if holiday in found:
            continue
        match = pattern.search(text)
        if match:
            matches.append({"holiday": holiday, "match_text": match.group(0), "confidence": 1.0})
            found.add(holiday)
    return matches


def seed_holidays(year=None):
    """Fills the holidays table from the calendar for `year` plus the seasonal events."""
    year = year or date.today().year
    count = 0
    for holiday in get_holidays_for_year(year):
        if db_models.upsert_holiday(holiday.event_title, holiday.type, holiday.full_date.isoformat()):
            count += 1
    for name in SEASONAL_EVENTS:
        if db_models.upsert_holiday(name, SHOPPING, None):
            count += 1
    logger.info("Seeded %s holidays for %s", count, year)
    return count


class HolidayCouponSync:
    """
    Matches active coupons to holidays. Unless `seed` is off, the holidays
    table is refreshed for `year` (default: this year) first, so dynamic
    dates such as Thanksgiving follow the calendar.
    """

    def __init__(self, batch_size=BATCH_SIZE, sleep=time.sleep, batch_delay=0.1, seed=True, year=None):
        self.batch_size = batch_size
        self._sleep = sleep
        self.batch_delay = batch_delay
        self.seed = seed
        self.year = year
        self._holidays = None

    def holiday_info(self, name):
        if self._holidays is None:
            self._holidays = db_models.get_active_holiday_map()
            logger.info("Cached %s holidays", len(self._holidays))
        return self._holidays.get(name)

    def sync(self):
        logger.info("Syncing holiday coupons...")
        if self.seed:
            seed_holidays(self.year)
            self._holidays = None
        processed = 0
        matched = 0
        errors = 0
        missing = set()
        offset = 0

        while True:
            logger.info("Fetching coupons %s - %s", offset, offset + self.batch_size)
            coupons = db_models.get_active_coupon_batch(offset, self.batch_size)
            if not coupons:
                logger.info("All coupons processed")
                break

            for coupon in coupons:
                processed += 1
                all_matches = (
                    [dict(m, source="title") for m in find_holiday_matches(coupon["title"])]
                    + [dict(m, source="description") for m in find_holiday_matches(coupon["description"])]
                )
                if all_matches:
                    logger.info("Coupon %s matched %s holidays", coupon["id"], len(all_matches))

                for match in all_matches:
                    info = self.holiday_info(match["holiday"])
                    if not info:
                        if match["holiday"] not in missing:
                            logger.warning("Holiday %r is not in the holidays table, skipping", match["holiday"])
                            missing.add(match["holiday"])
                        continue
                    saved = db_models.upsert_holiday_coupon({
                        "holiday_id": info["id"],
                        "coupon_id": coupon["id"],
                        "holiday_name": match["holiday"],
                        "holiday_date": info["date"],
                        "holiday_type": info["type"],
                        "match_source": match["source"],
                        "match_text": match["match_text"],
                        "confidence_score": match["confidence"],
                    })
                    if saved:
                        matched += 1
                    else:
                        errors += 1

                if processed % 100 == 0:
                    logger.info("Progress: %s coupons processed, %s holiday matches", processed, matched)

            offset += self.batch_size
            self._sleep(self.batch_delay)

        logger.info("Holiday coupon sync finished: %s processed, %s matched, %s errors",
                    processed, matched, errors)
        distribution = holiday_distribution()
        if distribution:
            logger.info("Holiday coupon distribution:")
            for name, count in distribution:
                logger.info("  %s: %s", name, count)

        return {"processed": processed, "matched": matched, "errors": errors}


def holiday_distribution():
    """(holiday name, coupon count) pairs, most coupons first."""
    return Counter(db_models.get_holiday_coupon_names()).most_common()


def sync_holiday_coupons():
    return HolidayCouponSync().sync()


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "sync"

    db_models.create_tables()
    if command == "seed":
        year = int(argv[1]) if len(argv) > 1 else None
        seed_holidays(year)
    elif command == "sync":
        sync_holiday_coupons()
    else:
        print("Usage: python sync_holiday_coupons.py [sync|seed [year]]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
