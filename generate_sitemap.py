"""
generate_sitemap.py
-------------------
Writes sitemap.xml: static pages, category pages, the top featured stores
and the alphabetical store directory.

Usage: python generate_sitemap.py [output_path]
"""

import os
import string
import sys
from datetime import date
from xml.sax.saxutils import escape

import config
import db_models
from logger import get_logger

logger = get_logger(__name__)

FEATURED_STORE_LIMIT = 10


def url_entry(path, lastmod, changefreq="weekly", priority="0.5", domain=None):
    loc = escape(f"{domain or config.SITE_DOMAIN}{path}")
    return (
        "  <url>\n"
        f"    <loc>{loc}</loc>\n"
        f"    <lastmod>{lastmod}</lastmod>\n"
        f"    <changefreq>{changefreq}</changefreq>\n"
        f"    <priority>{priority}</priority>\n"
        "  </url>"
    )


def build_sitemap_xml(today=None):
    lastmod = (today or date.today()).isoformat()
    categories = db_models.get_categories()
    stores = db_models.get_featured_stores(FEATURED_STORE_LIMIT, order_by="active_offers_count")
    logger.info("Sitemap: %s categories, %s featured stores", len(categories), len(stores))

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        "  <!-- Homepage -->",
        url_entry("/", lastmod, "daily", "1.0"),
        "  <!-- Main Pages -->",
        url_entry("/blog", lastmod, "weekly", "0.8"),
        url_entry("/holidays", lastmod, "weekly", "0.8"),
        url_entry("/categories", lastmod, "weekly", "0.8"),
        "  <!-- Category Pages -->",
    ]
    lines += [url_entry(f"/categories/{c['slug']}", lastmod, "weekly", "0.7") for c in categories]
    lines.append("  <!-- Top Featured Stores -->")
    lines += [url_entry(f"/store/{s['alias']}", lastmod, "weekly", "0.9") for s in stores]
    lines.append("  <!-- Store Directory Pages (alphabetical) -->")
    for letter in list(string.ascii_lowercase) + ["other"]:
        lines.append(url_entry(f"/stores/startwith/{letter}", lastmod, "weekly", "0.7"))
    lines.append("</urlset>")
    return "\n".join(lines) + "\n"


def generate_sitemap(output_path=None, today=None):
    """Writes the sitemap and returns how many URLs it lists."""
    output_path = output_path or config.SITEMAP_PATH
    sitemap = build_sitemap_xml(today)

    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(sitemap)

    url_count = sitemap.count("<loc>")
    logger.info("Generated sitemap with %s URLs at %s", url_count, output_path)
    return url_count


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    db_models.create_tables()
    try:
        generate_sitemap(argv[0] if argv else None)
    except OSError as e:
        logger.error("Error generating sitemap: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
