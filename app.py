import concurrent.futures
import functools
import math
import re
import string
import threading
import time
import uuid
from datetime import date, datetime, timedelta
from urllib.parse import urlsplit

from flask import Flask, Response, abort, jsonify, redirect, render_template, request, session, url_for
from flask_session import Session

import config
import db_models
import simple_cache
from cashback import (
    TRANSACTION_EXPIRY_DAYS,
    available_balance,
    build_tracking_url,
    calculate_cashback_amount,
    resolve_transaction_rate,
)
from coupon_scrapers import scrape_and_import
from generate_sitemap import build_sitemap_xml
from holiday_calendar import (
    get_holidays_for_year,
    get_upcoming_holidays,
    holiday_name_from_slug,
    slugify_holiday,
)
from logger import get_logger
from store_analysis import slugify_store_name
from sync_store import StoreNotFoundError, StoreSyncOrchestrator

logger = get_logger(__name__)

# --- App Configuration ---
app = Flask(__name__)
app.config["SECRET_KEY"] = config.SECRET_KEY
app.config["SESSION_TYPE"] = config.SESSION_TYPE
app.config["SESSION_PERMANENT"] = False
app.config["SESSION_FILE_DIR"] = config.SESSION_FILE_DIR
Session(app)

# Ensure all tables exist on startup
db_models.create_tables()

STORE_LETTERS = list(string.ascii_lowercase) + ["other"]
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@app.context_processor
def inject_globals():
    return {
        "site_name": config.SITE_NAME,
        "username": session.get("username"),
        "store_letters": STORE_LETTERS,
        "slugify_holiday": slugify_holiday,
    }


# --- Background coupon scraping ---

def run_coupon_scraper_loop():
    """
    Runs in a separate thread and periodically scrapes the configured coupon
    pages into the database.
    """
    logger.info("Starting background coupon scraper thread...")
    while True:
        try:
            logger.info("THREAD: Running coupon page scrape for %s pages", len(config.SCRAPE_URLS))
            for url in config.SCRAPE_URLS:
                result = scrape_and_import(url)
                logger.info("THREAD: %s -> %s new records", url, result["inserted"])
            logger.info("THREAD: Coupon scrape complete. Sleeping for %s hours.", config.SCRAPE_INTERVAL_HOURS)
            time.sleep(config.SCRAPE_INTERVAL_HOURS * 3600)
        except Exception as e:
            logger.error("THREAD: Error in coupon scraper loop: %s. Retrying in 1 hour.", e)
            time.sleep(3600)


# --- Webhook jobs ---
# Job state for store syncs started by the webhook. Entries expire with the cache TTL.
task_cache = simple_cache.task_cache
# Guards read-modify-write of task entries across request and worker threads
task_cache_lock = threading.Lock()

executor = concurrent.futures.ThreadPoolExecutor(max_workers=config.WORKER_THREADS)


def update_task(task_id, **fields):
    with task_cache_lock:
        task = dict(task_cache.get(task_id) or {})
        task.update(fields)
        task_cache.set(task_id, task)


def get_task(task_id):
    with task_cache_lock:
        return dict(task_cache.get(task_id) or {})


def run_store_sync(task_id, store_name):
    logger.info("THREADED JOB %s: Starting store sync for %r", task_id, store_name)
    update_task(task_id, status="RUNNING")
    try:
        result = StoreSyncOrchestrator(store_name).sync_store()
    except StoreNotFoundError as e:
        update_task(task_id, status="ERROR", message=str(e))
        return
    except Exception as e:
        logger.exception("THREADED JOB %s: store sync failed", task_id)
        update_task(task_id, status="ERROR", message=str(e))
        return

    update_task(
        task_id,
        status="SUCCESS",
        alias=result["store"]["alias"],
        steps=[s["success"] for s in result["steps"]],
        finished_at=datetime.now().isoformat(),
    )
    logger.info("THREADED JOB %s: Store sync finished", task_id)


# --- Helpers ---

def json_errors(message, **empty):
    """Turns an unexpected exception in an API route into a 500 JSON response."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.exception("API error in %s", func.__name__)
                return jsonify(error=message, **empty), 500
        return wrapper
    return decorator


def _int_arg(value, default, minimum=1, maximum=100):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, number))


def _number(value):
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # nan and inf are not amounts
    return number if math.isfinite(number) else None


def _valid_url(value):
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


@simple_cache.cached(simple_cache.metadata_cache, lambda: "categories")
def load_categories():
    return db_models.get_categories()


@simple_cache.cached(simple_cache.store_cache, lambda alias: f"store:{alias}")
def load_store(alias):
    return db_models.get_store_by_alias(alias)


# --- Authentication Routes ---
@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        username = request.form.get("username", "")
        password = request.form.get("password", "")
        user_id = db_models.authenticate_user(username, password)
        if user_id:
            session["user_id"] = user_id
            session["username"] = username
            return redirect(url_for("dashboard"))
        return render_template("login.html", error="Invalid username or password.", is_login=True)
    return render_template("login.html", is_login=True)


@app.route("/signup", methods=["GET", "POST"])
def signup():
    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        email = request.form.get("email", "").strip() or None
        if not username or not password:
            return render_template("login.html", error="Please fill all fields.", is_login=False)
        if not db_models.register_user(username, password, email=email):
            return render_template("login.html", error="Username already exists.", is_login=False)
        user_id = db_models.authenticate_user(username, password)
        if not user_id:
            return render_template("login.html", error="Account created, but login failed.", is_login=True)
        session["user_id"] = user_id
        session["username"] = username
        return redirect(url_for("dashboard"))
    return render_template("login.html", is_login=False)


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("home"))


# --- Pages ---
@app.route("/")
def home():
    return render_template(
        "index.html",
        featured_stores=db_models.get_featured_stores(12),
        featured_coupons=db_models.get_featured_coupons(12),
        holidays=get_upcoming_holidays(5),
        categories=load_categories(),
        reviews=db_models.get_featured_reviews(4),
        posts=db_models.get_recent_posts(3),
        faqs=db_models.get_general_faqs(8),
    )


@app.route("/store/<alias>")
def store_page(alias):
    store = load_store(alias)
    if not store:
        abort(404)
    return render_template(
        "store.html",
        store=store,
        coupons=db_models.get_store_coupons(store["id"]),
        similar_stores=db_models.get_similar_stores(store["id"]),
        faqs=db_models.get_store_faqs(store["id"]),
        cashback_rate=db_models.get_active_cashback_rate(store["id"]),
    )


@app.route("/stores/startwith/<letter>")
def stores_by_letter(letter):
    letter = letter.lower()
    if letter not in STORE_LETTERS:
        abort(404)
    return render_template("stores_letter.html", letter=letter, stores=db_models.get_stores_by_letter(letter))


@app.route("/categories")
def categories_page():
    return render_template("categories.html", categories=load_categories())


@app.route("/categories/<slug>")
def category_page(slug):
    category = db_models.get_category_by_slug(slug)
    if not category:
        abort(404)
    return render_template(
        "category.html",
        category=category,
        stores=db_models.get_stores_by_category(category["id"]),
        coupons=db_models.get_coupons_by_category(category["id"]),
        stats=db_models.get_category_stats(category["id"]),
        faqs=db_models.get_category_faqs(category["id"]),
    )


@app.route("/holidays")
def holidays_page():
    return render_template(
        "holidays.html",
        upcoming=get_upcoming_holidays(10),
        holidays=sorted(get_holidays_for_year(), key=lambda h: h.full_date),
    )


@app.route("/holidays/<slug>")
def holiday_page(slug):
    name = holiday_name_from_slug(slug)
    holiday = next((h for h in get_holidays_for_year() if h.event_title == name), None)
    return render_template(
        "holiday.html",
        name=name,
        holiday=holiday,
        coupons=db_models.get_holiday_coupons(name),
    )


@app.route("/blog")
def blog_page():
    return render_template("blog.html", posts=db_models.get_recent_posts(20))


@app.route("/submission/coupon/add")
def submit_coupon_page():
    return render_template("submit_coupon.html")


@app.route("/dashboard")
def dashboard():
    if "user_id" not in session:
        return redirect(url_for("login"))
    user = db_models.get_user(session["user_id"])
    if not user:
        session.clear()
        return redirect(url_for("login"))
    return render_template(
        "dashboard.html",
        user=user,
        transactions=db_models.get_user_transactions(user["id"]),
        payouts=db_models.get_user_payouts(user["id"]),
        available_balance=available_balance(user),
    )


@app.route("/sitemap.xml")
def sitemap():
    xml = simple_cache.metadata_cache.get("sitemap")
    if xml is None:
        xml = build_sitemap_xml()
        simple_cache.metadata_cache.set("sitemap", xml)
    return Response(xml, mimetype="application/xml")


# --- JSON API ---
@app.route("/api/holidays")
@json_errors("Failed to fetch holidays", success=False)
def api_holidays():
    year = request.args.get("year")
    holiday_type = request.args.get("type")
    if year:
        try:
            year = int(year)
            if year < 1:
                raise ValueError(year)
            holidays = sorted(get_holidays_for_year(year), key=lambda h: h.full_date)
        except ValueError:
            return jsonify(success=False, error="Invalid year"), 400
        today = date.today()
        for h in holidays:
            h.days_until = (h.full_date - today).days
    else:
        holidays = get_upcoming_holidays(_int_arg(request.args.get("count"), 10))

    if holiday_type:
        holidays = [h for h in holidays if h.type == holiday_type]

    data = [h.to_dict() for h in holidays]
    return jsonify(success=True, data=data, count=len(data), timestamp=datetime.now().isoformat())


@app.route("/api/search/stores")
@json_errors("Internal server error", stores=[])
def api_search_stores():
    query = (request.args.get("q") or "").strip()
    limit = _int_arg(request.args.get("limit"), 10, maximum=50)
    domain = (request.args.get("domain") or "").strip()

    if domain:
        return jsonify(stores=db_models.search_stores_by_domain(domain, limit))
    if len(query) < 2:
        return jsonify(stores=[])

    key = f"search:{query.lower()}:{limit}"
    stores = simple_cache.query_cache.get(key)
    if stores is None:
        stores = db_models.search_stores_by_name(query, limit)
        simple_cache.query_cache.set(key, stores)
    return jsonify(stores=stores)


@app.route("/api/stores/<alias>/coupons")
@json_errors("Internal server error", coupons=[])
def api_store_coupons(alias):
    store = load_store(alias)
    if not store:
        return jsonify(error="Store not found", coupons=[]), 404

    coupons = simple_cache.coupon_cache.get(f"coupons:{store['id']}")
    if coupons is None:
        coupons = db_models.get_store_coupons(store["id"])
        simple_cache.coupon_cache.set(f"coupons:{store['id']}", coupons)
    return jsonify(
        store={"id": store["id"], "name": store["name"], "alias": store["alias"], "logo_url": store["logo_url"]},
        coupons=coupons,
    )


@app.route("/api/coupons/featured")
@json_errors("Internal server error", coupons=[])
def api_featured_coupons():
    limit = _int_arg(request.args.get("limit"), 6, maximum=50)
    key = f"featured-coupons:{limit}"
    coupons = simple_cache.api_cache.get(key)
    if coupons is None:
        coupons = db_models.get_featured_coupons(limit)
        simple_cache.api_cache.set(key, coupons)
    return jsonify(coupons=coupons)


@app.route("/api/submission/coupon", methods=["POST"])
@json_errors("Internal server error")
def api_submit_coupon():
    data = request.get_json(silent=True) or {}
    store_name = (data.get("storeName") or "").strip()
    offer_url = (data.get("offerUrl") or "").strip()
    offer_title = (data.get("offerTitle") or "").strip()
    offer_type = data.get("offerType")

    if not store_name or not offer_url or not offer_title or not offer_type:
        return jsonify(error="Missing required fields"), 400
    if not _valid_url(offer_url):
        return jsonify(error="Invalid URL format"), 400

    store_id = data.get("storeId")
    if not store_id:
        existing = db_models.search_stores_by_name(store_name, limit=1)
        if existing:
            store_id = existing[0]["id"]
        else:
            alias = slugify_store_name(store_name)
            by_alias = db_models.get_store_by_alias(alias) if alias else None
            if by_alias:
                store_id = by_alias["id"]
            else:
                store_id = db_models.create_store({
                    "name": store_name,
                    "alias": alias,
                    "description": data.get("merchantDescription") or f"User submitted store: {store_name}",
                    "website": offer_url,
                    "url": offer_url,
                    "logo_url": data.get("merchantLogoUrl") or None,
                    "is_featured": 0,
                    "external_id": f"user-submission-{uuid.uuid4().hex}",
                })
                if not store_id:
                    return jsonify(error="Failed to create store entry"), 500

    is_code = offer_type == "code"
    discount = re.search(r"(\d+%|\$\d+)", offer_title)
    expiration = data.get("expirationDate")
    coupon_id = db_models.insert_coupon({
        "store_id": store_id,
        "external_id": f"user-submission-{uuid.uuid4().hex}",
        "title": offer_title,
        "subtitle": data.get("subtitle") or data.get("offerDescription") or offer_title,
        "code": data.get("couponCode") if is_code else None,
        "type": "code" if is_code else "deal",
        "discount_value": discount.group(0) if discount else "Special Offer",
        "description": data.get("offerDescription") or offer_title,
        "url": offer_url,
        "expires_at": expiration or None,
        "is_popular": 0,
        "is_active": 1,
    })
    if not coupon_id:
        return jsonify(error="Failed to submit coupon"), 500

    now = datetime.now().isoformat()
    db_models.add_sync_log(
        "user_coupon_submission", "completed", success_count=1, error_count=0,
        start_time=now, end_time=now,
        details={"store_name": store_name, "store_id": store_id, "coupon_id": coupon_id,
                 "coupon_title": offer_title, "submission_timestamp": now},
    )
    return jsonify(success=True, message="Coupon submitted successfully", coupon_id=coupon_id)


@app.route("/api/cashback/click", methods=["POST"])
@json_errors("Failed to track click")
def api_cashback_click():
    data = request.get_json(silent=True) or {}
    store = db_models.get_store_by_id(data.get("storeId"))
    if not store:
        return jsonify(error="Store not found"), 404

    target = store.get("affiliate_url") or store.get("url")
    if not target or not _valid_url(target):
        return jsonify(error="Store has no outbound URL"), 400

    click_id = db_models.log_click({
        "user_id": data.get("userId"),
        "store_id": store["id"],
        "coupon_id": data.get("couponId"),
        "ip_address": request.headers.get("X-Forwarded-For") or request.headers.get("X-Real-IP")
        or request.remote_addr or "unknown",
        "user_agent": request.headers.get("User-Agent", ""),
        "referrer": request.headers.get("Referer", ""),
        "session_id": data.get("sessionId"),
        "affiliate_url": target,
    })
    return jsonify(success=True, redirectUrl=build_tracking_url(target, click_id, data.get("userId")),
                   clickId=click_id)


@app.route("/api/cashback/transaction", methods=["POST"])
@json_errors("Failed to process cashback transaction")
def api_cashback_transaction():
    data = request.get_json(silent=True) or {}
    order_amount = _number(data.get("orderAmount"))
    if order_amount is None or order_amount <= 0:
        return jsonify(error="orderAmount must be a positive number"), 400

    store = db_models.get_store_by_id(data.get("storeId"))
    if not store:
        return jsonify(error="Store not found"), 404

    rate = resolve_transaction_rate(db_models.get_active_cashback_rate(store["id"]), store["commission_rate_data"])
    amount = calculate_cashback_amount(order_amount, rate)
    now = datetime.now()
    transaction = db_models.create_cashback_transaction({
        "user_id": data.get("userId"),
        "store_id": store["id"],
        "coupon_id": data.get("couponId"),
        "order_amount": order_amount,
        "cashback_amount": amount,
        "cashback_rate": rate,
        "transaction_id": data.get("transactionId"),
        "order_reference": data.get("orderReference"),
        "purchased_at": now.isoformat(),
        "expires_at": (now + timedelta(days=TRANSACTION_EXPIRY_DAYS)).isoformat(),
    })
    if not transaction:
        return jsonify(error="Failed to create transaction"), 500

    if data.get("userId"):
        db_models.add_pending_cashback(data["userId"], amount)
    return jsonify(success=True, transaction=transaction, cashbackAmount=amount, cashbackRate=rate)


@app.route("/api/cashback/user/<int:user_id>", methods=["GET"])
@json_errors("Failed to fetch user cashback data")
def api_cashback_user(user_id):
    user = db_models.get_user(user_id)
    if not user:
        return jsonify(error="User not found"), 404
    return jsonify(
        user=user,
        transactions=db_models.get_user_transactions(user_id, limit=10),
        payouts=db_models.get_user_payouts(user_id, limit=5),
        availableBalance=available_balance(user),
    )


@app.route("/api/cashback/user/<int:user_id>", methods=["PUT"])
@json_errors("Failed to update user cashback")
def api_cashback_user_update(user_id):
    data = request.get_json(silent=True) or {}
    if data.get("action") != "request_payout":
        return jsonify(error="Invalid action"), 400

    amount = _number(data.get("amount"))
    if amount is None or amount <= 0:
        return jsonify(error="Invalid amount"), 400
    user = db_models.get_user(user_id)
    if not user:
        return jsonify(error="User not found"), 404
    if amount > available_balance(user):
        return jsonify(error="Insufficient balance"), 400

    payout = db_models.create_payout(user_id, amount, data.get("method"), data.get("paymentDetails"))
    if not payout:
        return jsonify(error="Failed to create payout"), 500
    return jsonify(success=True, payout=payout)


@app.route("/api/subscriptions/holiday", methods=["POST"])
@json_errors("Failed to subscribe")
def api_holiday_subscription():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    holiday_title = (data.get("holidayTitle") or "").strip()
    if not EMAIL_RE.match(email) or not holiday_title:
        return jsonify(success=False, error="A valid email and holidayTitle are required"), 400
    if not db_models.add_email_subscription(email, holiday_title):
        return jsonify(success=False, error="Failed to save subscription"), 500
    return jsonify(success=True, message=f"Subscribed to {holiday_title} deals")


@app.route("/api/webhook/sync/store", methods=["POST"])
@json_errors("Failed to execute store synchronization", success=False)
def api_webhook_sync_store():
    data = request.get_json(silent=True) or {}
    store = data.get("store")
    if not store or not isinstance(store, str):
        return jsonify(success=False, error="Store name is required and must be a string"), 400

    task_id = str(uuid.uuid4())
    update_task(task_id, status="PENDING", store=store)
    executor.submit(run_store_sync, task_id, store)

    return jsonify(
        success=True,
        message=f"Store synchronization initiated for: {store}",
        taskId=task_id,
        timestamp=datetime.now().isoformat(),
    )


@app.route("/api/webhook/sync/status/<task_id>")
def api_webhook_sync_status(task_id):
    task = get_task(task_id)
    if not task:
        return jsonify(status="ERROR", message="Task not found"), 404
    return jsonify(task)


# Background threads exit with the app.
simple_cache.start_cleanup_thread()
if config.BACKGROUND_SYNC and config.SCRAPE_URLS:
    coupon_thread = threading.Thread(target=run_coupon_scraper_loop, daemon=True)
    coupon_thread.start()

if __name__ == "__main__":
    app.run(debug=True, port=5001)
