import itertools
import os
import sqlite3
import tempfile

# Settings are read when config is imported, so they must be in place first.
_TMP = tempfile.mkdtemp(prefix="couponmia-tests-")
os.environ.setdefault("COUPONMIA_DATABASE_PATH", os.path.join(_TMP, "couponmia.db"))
os.environ.setdefault("COUPONMIA_SESSION_DIR", os.path.join(_TMP, "sessions"))
os.environ["COUPONMIA_SITEMAP_PATH"] = os.path.join(_TMP, "static", "sitemap.xml")
os.environ["COUPONMIA_BACKGROUND_SYNC"] = "0"
os.environ["COUPONMIA_SYNC_STEP_DELAY"] = "0"

import pytest  # noqa: E402

import config  # noqa: E402
import db_models  # noqa: E402
import simple_cache  # noqa: E402
from store_analysis import generate_alias  # noqa: E402


def _clear_caches():
    for cache in simple_cache.ALL_CACHES.values():
        cache.clear()


@pytest.fixture
def db(tmp_path, monkeypatch):
    """A fresh database for the test, with every table created."""
    path = str(tmp_path / "couponmia.db")
    monkeypatch.setattr(config, "DATABASE_PATH", path)
    db_models.create_tables()
    _clear_caches()
    yield path
    _clear_caches()


@pytest.fixture
def run_sql(db):
    def _run(sql, params=()):
        conn = sqlite3.connect(db)
        conn.row_factory = sqlite3.Row
        try:
            rows = [dict(r) for r in conn.execute(sql, params).fetchall()]
            conn.commit()
        finally:
            conn.close()
        return rows
    return _run


@pytest.fixture
def make_store(db):
    counter = itertools.count(1)

    def _make(name="Nike", **fields):
        store = {
            "external_id": f"ext-{next(counter)}",
            "name": name,
            "alias": generate_alias(name),
            "description": f"{name} offers and coupons",
            "website": f"{generate_alias(name)}.com",
            "url": f"https://{generate_alias(name)}.com",
            "is_featured": 0,
        }
        store.update(fields)
        return db_models.create_store(store)
    return _make


@pytest.fixture
def make_coupon(db):
    counter = itertools.count(1)

    def _make(store_id, title="20% off sitewide", **fields):
        coupon = {
            "store_id": store_id,
            "external_id": f"link-{next(counter)}",
            "title": title,
            "type": "deal",
            "discount_value": title,
            "is_active": 1,
        }
        coupon.update(fields)
        return db_models.insert_coupon(coupon)
    return _make


@pytest.fixture
def flask_app(db):
    import app as app_module
    app_module.app.config["TESTING"] = True
    return app_module


@pytest.fixture
def client(flask_app):
    with flask_app.app.test_client() as test_client:
        yield test_client
