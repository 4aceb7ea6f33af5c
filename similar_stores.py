"""
similar_stores.py
-----------------
Content-based "similar stores" built from each store's name, category,
website, domains and countries.

Usage: python similar_stores.py [all|single <store>]
"""

import json
import sys

import pandas as pd
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import linear_kernel

import db_models
from logger import get_logger

logger = get_logger(__name__)

MAX_SIMILAR_STORES = 6


def _json_list(value):
    if not value:
        return []
    try:
        data = json.loads(value)
    except (TypeError, ValueError):
        return []
    if isinstance(data, list):
        return [str(v) for v in data if v]
    return [str(data)]


def _domain_suffix(website):
    host = (website or "").lower().split("/")[0]
    if "." not in host:
        return None
    return "." + host.rsplit(".", 1)[1]


def build_store_frame(stores):
    df = pd.DataFrame(stores)
    if df.empty:
        return df
    for column in ("category", "website", "domains_data", "countries_data"):
        if column not in df:
            df[column] = None
    df = df.reset_index(drop=True)
    df["countries"] = df["countries_data"].apply(_json_list)
    df["domains"] = df["domains_data"].apply(_json_list)
    df["features"] = (
        df["name"].fillna("") + " "
        + df["category"].fillna("") + " "
        + df["website"].fillna("") + " "
        + df["domains"].apply(" ".join) + " "
        + df["countries"].apply(" ".join)
    )
    return df


def similarity_matrix(df):
    """Pairwise cosine similarity of the stores' TF-IDF feature vectors, or None."""
    if df.shape[0] < 2:
        return None
    tfidf = TfidfVectorizer(stop_words="english")
    try:
        tfidf_matrix = tfidf.fit_transform(df["features"].values.astype("U"))
    except ValueError as e:
        logger.warning("Could not vectorize store features: %s", e)
        return None
    return linear_kernel(tfidf_matrix, tfidf_matrix)


def similarity_reasons(store, other):
    reasons = []
    if store["category"] and store["category"] == other["category"]:
        reasons.append(f"Same category: {store['category']}")
    shared = [c for c in store["countries"] if c in other["countries"]]
    if shared:
        reasons.append(f"Ships to the same countries: {', '.join(shared[:5])}")
    suffix = _domain_suffix(store["website"])
    if suffix and suffix == _domain_suffix(other["website"]):
        reasons.append(f"Same domain suffix: {suffix}")
    if not reasons:
        reasons.append("Similar store profile")
    return reasons


def find_similar(df, cosine_sim, idx, limit=MAX_SIMILAR_STORES):
    sim_scores = sorted(enumerate(cosine_sim[idx]), key=lambda x: x[1], reverse=True)
    store = df.iloc[idx]
    similar = []
    for other_idx, score in sim_scores:
        if other_idx == idx or score <= 0:
            continue
        other = df.iloc[other_idx]
        similar.append({
            "id": int(other["id"]),
            "name": other["name"],
            "similarity_score": int(round(float(score) * 100)),
            "reasons": similarity_reasons(store, other),
        })
        if len(similar) >= limit:
            break
    return similar


class SimilarStoresAnalyzer:
    def __init__(self, max_similar=MAX_SIMILAR_STORES):
        self.max_similar = max_similar

    def _prepare(self):
        df = build_store_frame(db_models.get_all_stores())
        return df, similarity_matrix(df)

    def _save(self, df, cosine_sim, idx):
        store = df.iloc[idx]
        similar = find_similar(df, cosine_sim, idx, self.max_similar)
        if not db_models.replace_similar_stores(int(store["id"]), similar):
            logger.error("Failed to save similar stores for %s", store["name"])
            return None
        return similar

    def analyze_all(self):
        logger.info("Analyzing similar stores for every store...")
        df, cosine_sim = self._prepare()
        if cosine_sim is None:
            logger.warning("Not enough stores to compare")
            return {"processed": 0, "errors": 0}

        processed = 0
        errors = 0
        for idx in range(df.shape[0]):
            if self._save(df, cosine_sim, idx) is None:
                errors += 1
                continue
            processed += 1
            if processed % 100 == 0:
                logger.info("Processed %s/%s stores", processed, df.shape[0])

        logger.info("Similar stores done: %s processed, %s failed", processed, errors)
        return {"processed": processed, "errors": errors}

    def analyze_single(self, name_or_alias):
        """Refreshes similar stores for every store whose name or alias matches."""
        targets = db_models.find_stores(name_or_alias)
        if not targets:
            logger.error("No store matches %r", name_or_alias)
            return None

        df, cosine_sim = self._prepare()
        if cosine_sim is None:
            logger.warning("Not enough stores to compare")
            return {}

        results = {}
        for target in targets:
            matches = df.index[df["id"] == target["id"]]
            if len(matches) == 0:
                continue
            similar = self._save(df, cosine_sim, int(matches[0]))
            if similar is None:
                continue
            results[target["id"]] = similar
            logger.info("%s: %s similar stores", target["name"], len(similar))
            for rank, item in enumerate(similar, 1):
                logger.info("  %s. %s (%s%%)", rank, item["name"], item["similarity_score"])
        return results


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "all"

    db_models.create_tables()
    analyzer = SimilarStoresAnalyzer()
    if command == "all":
        analyzer.analyze_all()
        return 0
    if command == "single" and len(argv) > 1:
        return 0 if analyzer.analyze_single(argv[1]) is not None else 1

    print("Usage: python similar_stores.py [all|single <store>]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
