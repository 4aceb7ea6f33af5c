"""
US holiday calendar used by the holiday landing pages and the holiday coupon sync.

Fixed-date holidays are listed in FIXED_HOLIDAYS; the moving ones (Easter,
Thanksgiving and the shopping days hanging off it, the Monday holidays, ...)
are computed per year.
"""

import calendar
import re
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Optional

FEDERAL = "Federal Holiday"
OBSERVANCE = "Observance"
SHOPPING = "Shopping Event"

_MONTH_ABBR = ("", "Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass
class Holiday:
    date: str
    event_title: str
    type: str
    month: int
    day: int
    is_dynamic: bool = False
    days_until: Optional[int] = None
    full_date: Optional[date] = None

    def to_dict(self):
        data = {
            "date": self.date,
            "eventTitle": self.event_title,
            "type": self.type,
            "month": self.month,
            "day": self.day,
        }
        if self.is_dynamic:
            data["isDynamic"] = True
        if self.days_until is not None:
            data["daysUntil"] = self.days_until
        if self.full_date is not None:
            data["fullDate"] = self.full_date.isoformat()
        return data


def _label(d):
    return f"{_MONTH_ABBR[d.month]} {d.day}"


def _fixed(month, day, title, kind):
    return Holiday(date=f"{_MONTH_ABBR[month]} {day}", event_title=title, type=kind, month=month, day=day)


FIXED_HOLIDAYS = [
    _fixed(1, 1, "New Year's Day", FEDERAL),
    _fixed(2, 14, "Valentine's Day", OBSERVANCE),
    _fixed(3, 17, "St. Patrick's Day", OBSERVANCE),
    _fixed(4, 1, "April Fools' Day", OBSERVANCE),
    _fixed(4, 15, "Tax Day", OBSERVANCE),
    _fixed(4, 22, "Earth Day", OBSERVANCE),
    _fixed(5, 5, "Cinco de Mayo", OBSERVANCE),
    _fixed(6, 19, "Juneteenth", FEDERAL),
    _fixed(7, 4, "Independence Day", FEDERAL),
    _fixed(8, 26, "Women's Equality Day", OBSERVANCE),
    _fixed(10, 31, "Halloween", OBSERVANCE),
    _fixed(11, 11, "Veterans Day", FEDERAL),
    _fixed(12, 25, "Christmas Day", FEDERAL),
    _fixed(12, 26, "Boxing Day", SHOPPING),
]


# --- Date arithmetic ---

def calculate_easter(year):
    """Gregorian Easter Sunday (Meeus/Jones/Butcher)."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def nth_weekday_of_month(year, month, nth, weekday):
    """The `nth` (1-based) `weekday` (calendar.MONDAY..SUNDAY) of a month."""
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + (nth - 1) * 7)


def last_weekday_of_month(year, month, weekday):
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def days_until(target, today=None):
    today = today or date.today()
    return (target - today).days


def _dynamic(d, title, kind):
    return Holiday(date=_label(d), event_title=title, type=kind, month=d.month, day=d.day,
                   is_dynamic=True, full_date=d)


def calculate_dynamic_holidays(year):
    thanksgiving = nth_weekday_of_month(year, 11, 4, calendar.THURSDAY)
    return [
        _dynamic(calculate_easter(year), "Easter Sunday", OBSERVANCE),
        _dynamic(thanksgiving, "Thanksgiving Day", FEDERAL),
        _dynamic(thanksgiving + timedelta(days=1), "Black Friday", SHOPPING),
        _dynamic(thanksgiving + timedelta(days=4), "Cyber Monday", SHOPPING),
        _dynamic(nth_weekday_of_month(year, 5, 2, calendar.SUNDAY), "Mother's Day", OBSERVANCE),
        _dynamic(nth_weekday_of_month(year, 6, 3, calendar.SUNDAY), "Father's Day", OBSERVANCE),
        _dynamic(nth_weekday_of_month(year, 1, 3, calendar.MONDAY), "Martin Luther King Jr. Day", FEDERAL),
        _dynamic(nth_weekday_of_month(year, 2, 3, calendar.MONDAY), "Presidents' Day", FEDERAL),
        _dynamic(last_weekday_of_month(year, 5, calendar.MONDAY), "Memorial Day", FEDERAL),
        _dynamic(nth_weekday_of_month(year, 9, 1, calendar.MONDAY), "Labor Day", FEDERAL),
        _dynamic(nth_weekday_of_month(year, 10, 2, calendar.MONDAY), "Columbus Day", FEDERAL),
    ]


# --- Public lookups ---

def get_holidays_for_year(year=None):
    """All fixed and dynamic holidays of `year`, each with its full date."""
    year = year or date.today().year
    fixed = [replace(h, full_date=date(year, h.month, h.day)) for h in FIXED_HOLIDAYS]
    return fixed + calculate_dynamic_holidays(year)


def get_upcoming_holidays(count=5, today=None):
    """
    Holidays of the current year falling on or after `today`, nearest first.
    Only the current calendar year is considered.
    """
    today = today or date.today()
    upcoming = []
    for holiday in get_holidays_for_year(today.year):
        if (holiday.month, holiday.day) >= (today.month, today.day):
            upcoming.append(replace(holiday, days_until=days_until(holiday.full_date, today)))
    upcoming.sort(key=lambda h: h.days_until)
    return upcoming[:count]


# --- Slugs for /holidays/<slug> ---

HOLIDAY_SLUGS = {
    "summer-sale": "Summer Sale",
    "winter-sale": "Winter Sale",
    "spring-sale": "Spring Sale",
    "fall-sale": "Fall Sale",
    "autumn-sale": "Autumn Sale",
    "black-friday": "Black Friday",
    "cyber-monday": "Cyber Monday",
    "prime-day": "Prime Day",
    "boxing-day": "Boxing Day",
    "new-years-day": "New Year's Day",
    "martin-luther-king-jr-day": "Martin Luther King Jr. Day",
    "presidents-day": "Presidents' Day",
    "memorial-day": "Memorial Day",
    "independence-day": "Independence Day",
    "labor-day": "Labor Day",
    "columbus-day": "Columbus Day",
    "veterans-day": "Veterans Day",
    "thanksgiving-day": "Thanksgiving Day",
    "christmas-day": "Christmas Day",
    "valentines-day": "Valentine's Day",
    "st-patricks-day": "St. Patrick's Day",
    "easter-sunday": "Easter Sunday",
    "mothers-day": "Mother's Day",
    "fathers-day": "Father's Day",
    "halloween": "Halloween",
    "back-to-school": "Back to School",
    "end-of-year": "End of Year",
    "womens-equality-day": "Women's Equality Day",
    "earth-day": "Earth Day",
    "april-fools-day": "April Fools' Day",
    "cinco-de-mayo": "Cinco de Mayo",
    "juneteenth": "Juneteenth",
    "tax-day": "Tax Day",
}


def holiday_name_from_slug(slug):
    return HOLIDAY_SLUGS.get(slug, slug.replace("-", " "))


def slugify_holiday(name):
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower().replace("'", ""))
    return slug.strip("-")
