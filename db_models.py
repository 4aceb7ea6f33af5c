import functools
import hashlib
import json
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import config
from logger import get_logger

logger = get_logger(__name__)

STORE_COLUMNS = (
    "external_id", "name", "alias", "logo_url", "description", "website", "url",
    "affiliate_url", "rating", "review_count", "active_offers_count", "is_featured",
    "category", "commission_rate_data", "countries_data", "domains_data",
    "commission_model_data", "discount_analysis", "updated_at",
)

COUPON_COLUMNS = (
    "store_id", "external_id", "title", "subtitle", "code", "type", "discount_value",
    "description", "url", "expires_at", "is_popular", "is_active", "min_spend",
    "countries", "updated_at",
)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password TEXT NOT NULL,
        name TEXT,
        email TEXT,
        referral_code TEXT UNIQUE,
        total_cashback_earned REAL DEFAULT 0,
        total_cashback_withdrawn REAL DEFAULT 0,
        total_cashback_pending REAL DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stores (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT UNIQUE,
        name TEXT NOT NULL,
        alias TEXT NOT NULL,
        logo_url TEXT,
        description TEXT,
        website TEXT,
        url TEXT,
        affiliate_url TEXT,
        rating REAL DEFAULT 0,
        review_count INTEGER DEFAULT 0,
        active_offers_count INTEGER DEFAULT 0,
        is_featured INTEGER DEFAULT 0,
        category TEXT,
        commission_rate_data TEXT,
        countries_data TEXT,
        domains_data TEXT,
        commission_model_data TEXT,
        discount_analysis TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_stores_alias ON stores(alias)",
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT UNIQUE NOT NULL,
        description TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS store_categories (
        store_id INTEGER NOT NULL,
        category_id INTEGER NOT NULL,
        PRIMARY KEY (store_id, category_id),
        FOREIGN KEY(store_id) REFERENCES stores(id),
        FOREIGN KEY(category_id) REFERENCES categories(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS coupons (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        store_id INTEGER NOT NULL,
        external_id TEXT UNIQUE,
        title TEXT NOT NULL,
        subtitle TEXT,
        code TEXT,
        type TEXT DEFAULT 'deal',
        discount_value TEXT,
        description TEXT,
        url TEXT,
        expires_at DATETIME,
        is_popular INTEGER DEFAULT 0,
        is_active INTEGER DEFAULT 1,
        min_spend REAL,
        view_count INTEGER DEFAULT 0,
        countries TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(store_id) REFERENCES stores(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_coupons_store ON coupons(store_id, is_active)",
    """
    CREATE TABLE IF NOT EXISTS holidays (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        type TEXT,
        holiday_date DATE,
        is_active INTEGER DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS holiday_coupons (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        holiday_id INTEGER NOT NULL,
        coupon_id INTEGER NOT NULL,
        holiday_name TEXT,
        holiday_date DATE,
        holiday_type TEXT,
        match_source TEXT,
        match_text TEXT,
        confidence_score REAL,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(holiday_id, coupon_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS similar_stores (
        store_id INTEGER NOT NULL,
        similar_store_id INTEGER NOT NULL,
        similarity_score INTEGER,
        reasons TEXT,
        rank INTEGER,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(store_id, similar_store_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS faqs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        store_id INTEGER,
        category_id INTEGER,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        display_order INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        author_name TEXT,
        title TEXT,
        content TEXT,
        rating REAL,
        is_featured INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS blog_posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        slug TEXT UNIQUE,
        excerpt TEXT,
        featured_image_url TEXT,
        author_name TEXT,
        is_published INTEGER DEFAULT 0,
        published_at DATETIME,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS click_tracking (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER,
        store_id INTEGER,
        coupon_id INTEGER,
        ip_address TEXT,
        user_agent TEXT,
        referrer TEXT,
        session_id TEXT,
        affiliate_url TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS store_cashback_rates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        store_id INTEGER UNIQUE NOT NULL,
        cashback_rate REAL NOT NULL,
        is_active INTEGER DEFAULT 1,
        valid_from DATETIME,
        valid_until DATETIME,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cashback_transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER,
        store_id INTEGER,
        coupon_id INTEGER,
        order_amount REAL,
        cashback_amount REAL,
        cashback_rate REAL,
        status TEXT DEFAULT 'pending',
        transaction_id TEXT,
        order_reference TEXT,
        purchased_at DATETIME,
        confirmed_at DATETIME,
        expires_at DATETIME,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cashback_payouts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        amount REAL NOT NULL,
        method TEXT,
        payment_details TEXT,
        status TEXT DEFAULT 'requested',
        requested_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sync_type TEXT NOT NULL,
        start_time DATETIME,
        end_time DATETIME,
        status TEXT,
        success_count INTEGER DEFAULT 0,
        error_count INTEGER DEFAULT 0,
        details TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_subscriptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL,
        holiday_title TEXT,
        subscribed_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


# --- Connection helpers ---

@contextmanager
def _connection():
    conn = sqlite3.connect(config.DATABASE_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _guarded(default=None):
    """Logs sqlite errors raised by the wrapped function and returns `default` instead."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except sqlite3.Error as e:
                logger.error("Database error (%s): %s", func.__name__, e)
                return default() if callable(default) else default
        return wrapper
    return decorator


def _now():
    return datetime.now().isoformat()


def _like_escape(text):
    """Escapes LIKE wildcards; pair with ESCAPE '\\'."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _rows(cursor):
    return [dict(row) for row in cursor.fetchall()]


def _one(cursor):
    row = cursor.fetchone()
    return dict(row) if row else None


def _json_or_none(value):
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def _loads(value, default=None):
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def create_tables():
    """Creates every table the site and the sync jobs use."""
    with _connection() as conn:
        cursor = conn.cursor()
        for statement in _SCHEMA:
            cursor.execute(statement)


# --- Users ---

def hash_password(password):
    return hashlib.sha256(password.encode()).hexdigest()


def generate_referral_code():
    return secrets.token_hex(4).upper()


def register_user(username, password, name=None, email=None):
    try:
        with _connection() as conn:
            conn.execute(
                "INSERT INTO users (username, password, name, email, referral_code) VALUES (?, ?, ?, ?, ?)",
                (username, hash_password(password), name or username, email, generate_referral_code()),
            )
        return True
    except sqlite3.IntegrityError:
        return False


@_guarded()
def authenticate_user(username, password):
    with _connection() as conn:
        row = conn.execute("SELECT id, password FROM users WHERE username=?", (username,)).fetchone()
    if row and row["password"] == hash_password(password):
        return row["id"]
    return None


@_guarded()
def get_user(user_id):
    with _connection() as conn:
        return _one(conn.execute(
            """
            SELECT id, username, name, email, referral_code, total_cashback_earned,
                   total_cashback_withdrawn, total_cashback_pending
            FROM users WHERE id = ?
            """,
            (user_id,),
        ))


@_guarded(False)
def add_pending_cashback(user_id, amount):
    with _connection() as conn:
        cursor = conn.execute(
            "UPDATE users SET total_cashback_pending = total_cashback_pending + ? WHERE id = ?",
            (amount, user_id),
        )
        return cursor.rowcount > 0


# --- Stores ---

@_guarded()
def get_store_by_alias(alias):
    with _connection() as conn:
        store = _one(conn.execute("SELECT * FROM stores WHERE alias = ? ORDER BY id LIMIT 1", (alias,)))
    if store:
        store["discount_analysis"] = _loads(store["discount_analysis"])
    return store


@_guarded()
def get_store_by_id(store_id):
    with _connection() as conn:
        return _one(conn.execute("SELECT * FROM stores WHERE id = ?", (store_id,)))


@_guarded(list)
def search_stores_by_name(query, limit=10):
    """Stores whose name contains `query`; prefix matches and busy stores first."""
    term = query.strip()
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT id, name, alias, logo_url, active_offers_count, website
            FROM stores
            WHERE name LIKE ? ESCAPE '\\'
            ORDER BY CASE WHEN name LIKE ? ESCAPE '\\' THEN 0 ELSE 1 END, active_offers_count DESC, name
            LIMIT ?
            """,
            (f"%{_like_escape(term)}%", f"{_like_escape(term)}%", limit),
        ))


@_guarded(list)
def search_stores_by_domain(domain, limit=10):
    domain = domain.strip().lower()
    if domain.startswith("www."):
        domain = domain[4:]
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT id, name, alias, logo_url, active_offers_count, website
            FROM stores
            WHERE lower(website) LIKE ? ESCAPE '\\' OR lower(domains_data) LIKE ? ESCAPE '\\'
            ORDER BY active_offers_count DESC
            LIMIT ?
            """,
            (f"%{_like_escape(domain)}%", f'%"{_like_escape(domain)}"%', limit),
        ))


@_guarded(list)
def get_stores_by_letter(letter):
    """Stores listed under /stores/startwith/<letter>; 'other' collects non a-z names."""
    with _connection() as conn:
        if letter == "other":
            cursor = conn.execute(
                "SELECT id, name, alias, logo_url, active_offers_count FROM stores "
                "WHERE lower(substr(name, 1, 1)) NOT BETWEEN 'a' AND 'z' ORDER BY name"
            )
        else:
            cursor = conn.execute(
                "SELECT id, name, alias, logo_url, active_offers_count FROM stores "
                "WHERE lower(substr(name, 1, 1)) = ? ORDER BY name",
                (letter.lower(),),
            )
        return _rows(cursor)


@_guarded(list)
def get_featured_stores(limit=6, order_by="created_at"):
    order = "active_offers_count DESC" if order_by == "active_offers_count" else "created_at DESC, id DESC"
    with _connection() as conn:
        return _rows(conn.execute(
            f"SELECT * FROM stores WHERE is_featured = 1 ORDER BY {order} LIMIT ?",
            (limit,),
        ))


@_guarded(list)
def find_stores(name_or_alias):
    """Case-insensitive substring match on name or alias."""
    pattern = f"%{_like_escape(name_or_alias)}%"
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT * FROM stores WHERE name LIKE ? ESCAPE '\\' OR alias LIKE ? ESCAPE '\\' ORDER BY id",
            (pattern, pattern),
        ))


@_guarded(list)
def get_all_stores():
    with _connection() as conn:
        return _rows(conn.execute("SELECT * FROM stores ORDER BY active_offers_count DESC, id"))


@_guarded(dict)
def get_store_external_id_map():
    with _connection() as conn:
        rows = conn.execute("SELECT id, external_id FROM stores WHERE external_id IS NOT NULL").fetchall()
    return {row["external_id"]: row["id"] for row in rows}


@_guarded()
def upsert_store_by_external_id(store):
    """Inserts or updates a store keyed on external_id. Returns 'inserted' or 'updated'."""
    data = {k: _json_or_none(v) if k == "discount_analysis" else v
            for k, v in store.items() if k in STORE_COLUMNS}
    data.setdefault("updated_at", _now())
    with _connection() as conn:
        existing = conn.execute("SELECT id FROM stores WHERE external_id = ?", (data["external_id"],)).fetchone()
        if existing:
            assignments = ", ".join(f"{col} = ?" for col in data)
            conn.execute(f"UPDATE stores SET {assignments} WHERE id = ?", (*data.values(), existing["id"]))
            return "updated"
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        conn.execute(f"INSERT INTO stores ({columns}) VALUES ({placeholders})", tuple(data.values()))
        return "inserted"


@_guarded()
def create_store(store):
    data = {k: v for k, v in store.items() if k in STORE_COLUMNS}
    columns = ", ".join(data)
    placeholders = ", ".join("?" for _ in data)
    with _connection() as conn:
        cursor = conn.execute(f"INSERT INTO stores ({columns}) VALUES ({placeholders})", tuple(data.values()))
        return cursor.lastrowid


@_guarded(False)
def update_store(store_id, **fields):
    data = {k: _json_or_none(v) if k == "discount_analysis" else v
            for k, v in fields.items() if k in STORE_COLUMNS}
    if not data:
        return False
    data.setdefault("updated_at", _now())
    assignments = ", ".join(f"{col} = ?" for col in data)
    with _connection() as conn:
        cursor = conn.execute(f"UPDATE stores SET {assignments} WHERE id = ?", (*data.values(), store_id))
        return cursor.rowcount > 0


@_guarded(list)
def get_stores_with_active_coupons(name_filter=None):
    sql = """
        SELECT DISTINCT s.id, s.external_id, s.name, s.alias
        FROM stores s JOIN coupons c ON c.store_id = s.id
        WHERE c.is_active = 1
    """
    params = []
    if name_filter:
        sql += " AND (s.name LIKE ? ESCAPE '\\' OR s.alias LIKE ? ESCAPE '\\')"
        pattern = f"%{_like_escape(name_filter)}%"
        params = [pattern, pattern]
    sql += " ORDER BY s.id"
    with _connection() as conn:
        return _rows(conn.execute(sql, params))


# --- Coupons ---

@_guarded(list)
def get_store_coupons(store_id):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT * FROM coupons
            WHERE store_id = ? AND is_active = 1
            ORDER BY is_popular DESC, CASE WHEN type = 'code' THEN 0 ELSE 1 END, created_at DESC, id DESC
            """,
            (store_id,),
        ))


@_guarded(list)
def get_featured_coupons(limit=6):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT c.id, c.title, c.subtitle, c.code, c.type, c.discount_value, c.expires_at,
                   c.view_count, c.url, s.name AS store_name, s.alias AS store_alias, s.logo_url
            FROM coupons c JOIN stores s ON s.id = c.store_id
            WHERE c.is_active = 1
            ORDER BY c.is_popular DESC, s.is_featured DESC, c.view_count DESC, c.id DESC
            LIMIT ?
            """,
            (limit,),
        ))


@_guarded(list)
def get_active_discount_values(store_id):
    with _connection() as conn:
        rows = conn.execute(
            "SELECT discount_value FROM coupons WHERE store_id = ? AND is_active = 1",
            (store_id,),
        ).fetchall()
    return [row["discount_value"] for row in rows]


@_guarded()
def upsert_coupon_by_external_id(coupon):
    data = {k: v for k, v in coupon.items() if k in COUPON_COLUMNS}
    data.setdefault("updated_at", _now())
    with _connection() as conn:
        existing = conn.execute("SELECT id FROM coupons WHERE external_id = ?", (data["external_id"],)).fetchone()
        if existing:
            assignments = ", ".join(f"{col} = ?" for col in data)
            conn.execute(f"UPDATE coupons SET {assignments} WHERE id = ?", (*data.values(), existing["id"]))
            return "updated"
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        conn.execute(f"INSERT INTO coupons ({columns}) VALUES ({placeholders})", tuple(data.values()))
        return "inserted"


@_guarded()
def insert_coupon(coupon):
    data = {k: v for k, v in coupon.items() if k in COUPON_COLUMNS}
    columns = ", ".join(data)
    placeholders = ", ".join("?" for _ in data)
    with _connection() as conn:
        cursor = conn.execute(f"INSERT INTO coupons ({columns}) VALUES ({placeholders})", tuple(data.values()))
        return cursor.lastrowid


@_guarded(False)
def coupon_exists(store_id, code=None, title=None):
    """A coupon with the same code (or, for deals, the same title) already exists for the store."""
    with _connection() as conn:
        if code:
            row = conn.execute("SELECT 1 FROM coupons WHERE store_id = ? AND code = ?", (store_id, code)).fetchone()
        else:
            row = conn.execute("SELECT 1 FROM coupons WHERE store_id = ? AND title = ?", (store_id, title)).fetchone()
    return row is not None


@_guarded(0)
def deactivate_expired_coupons(now=None):
    with _connection() as conn:
        cursor = conn.execute(
            "UPDATE coupons SET is_active = 0 WHERE expires_at IS NOT NULL AND expires_at < ? AND is_active = 1",
            ((now or datetime.now()).isoformat(),),
        )
        return cursor.rowcount


@_guarded(list)
def get_active_coupon_batch(offset, limit):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT id, title, description, store_id FROM coupons WHERE is_active = 1 ORDER BY id LIMIT ? OFFSET ?",
            (limit, offset),
        ))


# --- Categories ---

@_guarded()
def add_category(name, slug, description=None):
    with _connection() as conn:
        cursor = conn.execute(
            "INSERT INTO categories (name, slug, description) VALUES (?, ?, ?)",
            (name, slug, description),
        )
        return cursor.lastrowid


@_guarded(False)
def assign_store_category(store_id, category_id):
    with _connection() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO store_categories (store_id, category_id) VALUES (?, ?)",
            (store_id, category_id),
        )
    return True


@_guarded(list)
def get_categories():
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT c.id, c.name, c.slug, c.description, c.created_at, COUNT(sc.store_id) AS store_count
            FROM categories c LEFT JOIN store_categories sc ON sc.category_id = c.id
            GROUP BY c.id ORDER BY c.name
            """
        ))


@_guarded()
def get_category_by_slug(slug):
    with _connection() as conn:
        return _one(conn.execute("SELECT * FROM categories WHERE slug = ?", (slug,)))


@_guarded(list)
def get_stores_by_category(category_id, limit=50):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT s.* FROM stores s JOIN store_categories sc ON sc.store_id = s.id
            WHERE sc.category_id = ?
            ORDER BY s.active_offers_count DESC, s.name
            LIMIT ?
            """,
            (category_id, limit),
        ))


@_guarded(list)
def get_coupons_by_category(category_id, limit=30):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT c.*, s.name AS store_name, s.alias AS store_alias, s.logo_url
            FROM coupons c
            JOIN stores s ON s.id = c.store_id
            JOIN store_categories sc ON sc.store_id = s.id
            WHERE sc.category_id = ? AND c.is_active = 1
            ORDER BY c.is_popular DESC, c.id DESC
            LIMIT ?
            """,
            (category_id, limit),
        ))


@_guarded(dict)
def get_category_stats(category_id):
    with _connection() as conn:
        row = conn.execute(
            """
            SELECT COUNT(DISTINCT sc.store_id) AS store_count,
                   COUNT(c.id) AS coupon_count,
                   COALESCE(SUM(CASE WHEN c.type = 'code' THEN 1 ELSE 0 END), 0) AS code_count
            FROM store_categories sc
            LEFT JOIN coupons c ON c.store_id = sc.store_id AND c.is_active = 1
            WHERE sc.category_id = ?
            """,
            (category_id,),
        ).fetchone()
    return dict(row)


@_guarded(list)
def get_featured_stores_in_category(category_name):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT s.id, s.name FROM stores s
            JOIN store_categories sc ON sc.store_id = s.id
            JOIN categories c ON c.id = sc.category_id
            WHERE c.name = ? AND s.is_featured = 1
            """,
            (category_name,),
        ))


# --- Holidays ---

@_guarded()
def upsert_holiday(name, holiday_type, holiday_date):
    with _connection() as conn:
        conn.execute(
            """
            INSERT INTO holidays (name, type, holiday_date, is_active) VALUES (?, ?, ?, 1)
            ON CONFLICT(name) DO UPDATE SET type = excluded.type, holiday_date = excluded.holiday_date
            """,
            (name, holiday_type, holiday_date),
        )
        return conn.execute("SELECT id FROM holidays WHERE name = ?", (name,)).fetchone()["id"]


@_guarded(dict)
def get_active_holiday_map():
    with _connection() as conn:
        rows = conn.execute("SELECT id, name, type, holiday_date FROM holidays WHERE is_active = 1").fetchall()
    return {row["name"]: {"id": row["id"], "date": row["holiday_date"], "type": row["type"]} for row in rows}


@_guarded(False)
def upsert_holiday_coupon(record):
    with _connection() as conn:
        conn.execute(
            """
            INSERT INTO holiday_coupons (holiday_id, coupon_id, holiday_name, holiday_date, holiday_type,
                                         match_source, match_text, confidence_score, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(holiday_id, coupon_id) DO UPDATE SET
                match_source = excluded.match_source, match_text = excluded.match_text,
                confidence_score = excluded.confidence_score, holiday_date = excluded.holiday_date,
                updated_at = excluded.updated_at
            """,
            (record["holiday_id"], record["coupon_id"], record["holiday_name"], record.get("holiday_date"),
             record.get("holiday_type"), record.get("match_source"), record.get("match_text"),
             record.get("confidence_score", 1.0), _now()),
        )
    return True


@_guarded(list)
def get_holiday_coupons(holiday_name, limit=50):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT hc.holiday_name, hc.match_source, hc.match_text, c.id AS coupon_id, c.title, c.code,
                   c.type, c.discount_value, c.description, c.url, c.expires_at,
                   s.name AS store_name, s.alias AS store_alias, s.logo_url
            FROM holiday_coupons hc
            JOIN coupons c ON c.id = hc.coupon_id
            JOIN stores s ON s.id = c.store_id
            WHERE hc.holiday_name = ? AND c.is_active = 1
            ORDER BY c.is_popular DESC, hc.confidence_score DESC, c.id DESC
            LIMIT ?
            """,
            (holiday_name, limit),
        ))


@_guarded(list)
def get_holiday_coupon_names():
    with _connection() as conn:
        rows = conn.execute("SELECT holiday_name FROM holiday_coupons ORDER BY holiday_name").fetchall()
    return [row["holiday_name"] for row in rows]


# --- Similar stores ---

@_guarded(False)
def replace_similar_stores(store_id, similar):
    with _connection() as conn:
        conn.execute("DELETE FROM similar_stores WHERE store_id = ?", (store_id,))
        conn.executemany(
            "INSERT INTO similar_stores (store_id, similar_store_id, similarity_score, reasons, rank) "
            "VALUES (?, ?, ?, ?, ?)",
            [(store_id, s["id"], s["similarity_score"], json.dumps(s.get("reasons", [])), rank)
             for rank, s in enumerate(similar, 1)],
        )
    return True


@_guarded(list)
def get_similar_stores(store_id, limit=6):
    with _connection() as conn:
        rows = _rows(conn.execute(
            """
            SELECT s.id, s.name, s.alias, s.logo_url, s.active_offers_count, ss.similarity_score, ss.reasons
            FROM similar_stores ss JOIN stores s ON s.id = ss.similar_store_id
            WHERE ss.store_id = ?
            ORDER BY ss.rank
            LIMIT ?
            """,
            (store_id, limit),
        ))
    for row in rows:
        row["reasons"] = _loads(row["reasons"], [])
    return rows


# --- FAQs, reviews, blog ---

@_guarded(list)
def get_store_faqs(store_id):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT question, answer FROM faqs WHERE store_id = ? ORDER BY display_order, id", (store_id,)
        ))


@_guarded(list)
def get_category_faqs(category_id):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT question, answer FROM faqs WHERE category_id = ? ORDER BY display_order, id", (category_id,)
        ))


@_guarded(list)
def get_general_faqs(limit=8):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT question, answer FROM faqs WHERE store_id IS NULL AND category_id IS NULL "
            "ORDER BY display_order, id LIMIT ?",
            (limit,),
        ))


@_guarded(list)
def get_featured_reviews(limit=4):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT * FROM reviews WHERE is_featured = 1 ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ))


@_guarded(list)
def get_recent_posts(limit=5):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT title, slug, excerpt, featured_image_url, COALESCE(published_at, created_at) AS published
            FROM blog_posts WHERE is_published = 1
            ORDER BY published DESC LIMIT ?
            """,
            (limit,),
        ))


# --- Cashback ---

@_guarded()
def log_click(click):
    """Records an outbound affiliate click and returns its id."""
    with _connection() as conn:
        cursor = conn.execute(
            """
            INSERT INTO click_tracking (user_id, store_id, coupon_id, ip_address, user_agent, referrer,
                                        session_id, affiliate_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (click.get("user_id"), click.get("store_id"), click.get("coupon_id"), click.get("ip_address"),
             click.get("user_agent"), click.get("referrer"), click.get("session_id"),
             click.get("affiliate_url"), _now()),
        )
        return cursor.lastrowid


@_guarded()
def get_active_cashback_rate(store_id):
    with _connection() as conn:
        return _one(conn.execute(
            "SELECT * FROM store_cashback_rates WHERE store_id = ? AND is_active = 1", (store_id,)
        ))


@_guarded()
def upsert_cashback_rate(store_id, cashback_rate, valid_from=None):
    """Returns 'inserted' or 'updated'."""
    with _connection() as conn:
        existing = conn.execute(
            "SELECT id FROM store_cashback_rates WHERE store_id = ?", (store_id,)
        ).fetchone()
        if existing:
            conn.execute(
                "UPDATE store_cashback_rates SET cashback_rate = ?, is_active = 1, updated_at = ? WHERE id = ?",
                (cashback_rate, _now(), existing["id"]),
            )
            return "updated"
        conn.execute(
            "INSERT INTO store_cashback_rates (store_id, cashback_rate, is_active, valid_from) VALUES (?, ?, 1, ?)",
            (store_id, cashback_rate, valid_from or _now()),
        )
        return "inserted"


@_guarded()
def create_cashback_transaction(transaction):
    with _connection() as conn:
        cursor = conn.execute(
            """
            INSERT INTO cashback_transactions (user_id, store_id, coupon_id, order_amount, cashback_amount,
                cashback_rate, status, transaction_id, order_reference, purchased_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?)
            """,
            (transaction.get("user_id"), transaction["store_id"], transaction.get("coupon_id"),
             transaction["order_amount"], transaction["cashback_amount"], transaction["cashback_rate"],
             transaction.get("transaction_id"), transaction.get("order_reference"),
             transaction["purchased_at"], transaction["expires_at"]),
        )
        return _one(conn.execute("SELECT * FROM cashback_transactions WHERE id = ?", (cursor.lastrowid,)))


@_guarded(list)
def get_user_transactions(user_id, limit=10):
    with _connection() as conn:
        return _rows(conn.execute(
            """
            SELECT t.id, t.order_amount, t.cashback_amount, t.cashback_rate, t.status, t.purchased_at,
                   t.confirmed_at, s.name AS store_name, s.logo_url AS store_logo_url, c.title AS coupon_title
            FROM cashback_transactions t
            LEFT JOIN stores s ON s.id = t.store_id
            LEFT JOIN coupons c ON c.id = t.coupon_id
            WHERE t.user_id = ?
            ORDER BY t.created_at DESC, t.id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ))


@_guarded(list)
def get_user_payouts(user_id, limit=5):
    with _connection() as conn:
        return _rows(conn.execute(
            "SELECT id, amount, method, status, requested_at FROM cashback_payouts "
            "WHERE user_id = ? ORDER BY requested_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ))


@_guarded()
def create_payout(user_id, amount, method, payment_details=None):
    """Creates a payout request and moves `amount` into the user's pending total."""
    with _connection() as conn:
        cursor = conn.execute(
            "INSERT INTO cashback_payouts (user_id, amount, method, payment_details, status, requested_at) "
            "VALUES (?, ?, ?, ?, 'requested', ?)",
            (user_id, amount, method, _json_or_none(payment_details), _now()),
        )
        conn.execute(
            "UPDATE users SET total_cashback_pending = total_cashback_pending + ? WHERE id = ?",
            (amount, user_id),
        )
        return _one(conn.execute(
            "SELECT id, user_id, amount, method, status, requested_at FROM cashback_payouts WHERE id = ?",
            (cursor.lastrowid,),
        ))


# --- Sync logs & subscriptions ---

@_guarded()
def add_sync_log(sync_type, status, success_count=0, error_count=0, details=None,
                 start_time=None, end_time=None):
    with _connection() as conn:
        cursor = conn.execute(
            "INSERT INTO sync_logs (sync_type, start_time, end_time, status, success_count, error_count, details) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (sync_type, start_time, end_time, status, success_count, error_count, _json_or_none(details)),
        )
        return cursor.lastrowid


@_guarded(list)
def get_sync_logs(sync_type=None, limit=50):
    with _connection() as conn:
        if sync_type:
            rows = _rows(conn.execute(
                "SELECT * FROM sync_logs WHERE sync_type = ? ORDER BY id DESC LIMIT ?", (sync_type, limit)
            ))
        else:
            rows = _rows(conn.execute("SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,)))
    for row in rows:
        row["details"] = _loads(row["details"], {})
    return rows


@_guarded()
def add_email_subscription(email, holiday_title):
    with _connection() as conn:
        cursor = conn.execute(
            "INSERT INTO email_subscriptions (email, holiday_title, subscribed_at) VALUES (?, ?, ?)",
            (email, holiday_title, _now()),
        )
        return cursor.lastrowid
