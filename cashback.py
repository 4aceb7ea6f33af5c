import json
from datetime import datetime
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from logger import get_logger

logger = get_logger(__name__)

DEFAULT_CASHBACK_RATE = 2.0
COMMISSION_SHARE_RATE = 0.5
MIN_SYNCED_RATE = 1.0
MAX_SYNCED_RATE = 10.0
TRANSACTION_EXPIRY_DAYS = 60


def parse_commission_rate(commission_rate_data):
    """
    Reads the `rate` out of a store's commission_rate_data JSON blob.
    Numeric strings such as "8" or "8%" are accepted.
    """
    if not commission_rate_data:
        return None
    try:
        data = json.loads(commission_rate_data) if isinstance(commission_rate_data, str) else commission_rate_data
    except ValueError:
        logger.warning("Unparseable commission data: %r", commission_rate_data)
        return None
    if not isinstance(data, dict):
        return None

    rate = data.get("rate")
    if isinstance(rate, bool):
        return None
    if isinstance(rate, (int, float)):
        return float(rate)
    if isinstance(rate, str):
        try:
            return float(rate.strip().rstrip("%"))
        except ValueError:
            return None
    return None


def calculate_cashback_rate(commission_rate_data):
    """Cashback rate published for a store: half its commission, kept within 1-10%."""
    rate = parse_commission_rate(commission_rate_data)
    if not rate:
        return DEFAULT_CASHBACK_RATE
    rate = rate * COMMISSION_SHARE_RATE
    rate = max(min(rate, MAX_SYNCED_RATE), MIN_SYNCED_RATE)
    return round(rate, 2)


def _parse_ts(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


def resolve_transaction_rate(rate_row, commission_rate_data, now=None):
    """
    Rate applied to a purchase. An active store_cashback_rates row wins while
    `now` is inside its validity window; a row outside the window leaves the
    default. Stores without a row get half their commission rate.
    """
    now = now or datetime.now()
    if rate_row:
        valid_from = _parse_ts(rate_row.get("valid_from"))
        valid_until = _parse_ts(rate_row.get("valid_until"))
        if (valid_from is None or now >= valid_from) and (valid_until is None or now <= valid_until):
            return float(rate_row["cashback_rate"])
        return DEFAULT_CASHBACK_RATE

    commission = parse_commission_rate(commission_rate_data)
    if commission:
        return commission * COMMISSION_SHARE_RATE
    return DEFAULT_CASHBACK_RATE


def calculate_cashback_amount(order_amount, cashback_rate):
    return order_amount * cashback_rate / 100


def available_balance(user):
    return (
        (user.get("total_cashback_earned") or 0)
        - (user.get("total_cashback_withdrawn") or 0)
        - (user.get("total_cashback_pending") or 0)
    )


def build_tracking_url(base_url, click_id, user_id=None):
    """Appends the cm_click_id / cm_user_id tracking parameters to an affiliate URL."""
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k not in ("cm_click_id", "cm_user_id")]
    query.append(("cm_click_id", "" if click_id is None else str(click_id)))
    if user_id:
        query.append(("cm_user_id", str(user_id)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
