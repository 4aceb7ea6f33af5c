from datetime import date

import db_models
from generate_sitemap import build_sitemap_xml, generate_sitemap, url_entry

# homepage, three main pages and 27 directory letters
BASE_URL_COUNT = 31


def test_url_entry_escapes_location():
    entry = url_entry("/categories/food&drink", "2024-01-02", domain="https://couponmia.com")
    assert "<loc>https://couponmia.com/categories/food&amp;drink</loc>" in entry
    assert "<lastmod>2024-01-02</lastmod>" in entry


class TestSitemap:
    def test_lists_categories_and_featured_stores(self, db, make_store):
        db_models.add_category("Fashion", "fashion")
        make_store("Nike", is_featured=1, active_offers_count=5)
        make_store("Hidden", is_featured=0)

        xml = build_sitemap_xml(today=date(2024, 1, 2))
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert "/categories/fashion</loc>" in xml
        assert "/store/nike</loc>" in xml
        assert "/store/hidden" not in xml
        assert "/stores/startwith/other</loc>" in xml
        assert "<lastmod>2024-01-02</lastmod>" in xml
        assert xml.count("<loc>") == BASE_URL_COUNT + 2

    def test_only_top_featured_stores(self, db, make_store):
        for i in range(12):
            make_store(f"Store {i}", is_featured=1, active_offers_count=i)
        xml = build_sitemap_xml()
        assert xml.count("/store/") == 10
        assert "/store/store-11<" in xml
        assert "/store/store-0<" not in xml

    def test_generate_writes_file(self, db, tmp_path):
        output = tmp_path / "static" / "sitemap.xml"
        assert generate_sitemap(str(output), today=date(2024, 1, 2)) == BASE_URL_COUNT
        assert output.read_text(encoding="utf-8").rstrip().endswith("</urlset>")
