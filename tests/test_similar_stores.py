import json

import db_models
from similar_stores import (
    SimilarStoresAnalyzer,
    build_store_frame,
    similarity_matrix,
    similarity_reasons,
)


def seed_stores(make_store):
    return {
        "nike": make_store("Nike", category="Fashion", website="nike.com", countries_data=json.dumps(["US"])),
        "adidas": make_store("Adidas", category="Fashion", website="adidas.com",
                             countries_data=json.dumps(["US", "DE"])),
        "dell": make_store("Dell", category="Electronics", website="dell.co.uk",
                           countries_data=json.dumps(["UK"])),
    }


class TestStoreFrame:
    def test_empty(self):
        assert build_store_frame([]).empty

    def test_features_combine_store_fields(self):
        df = build_store_frame([{"id": 1, "name": "Nike", "category": "Fashion", "website": "nike.com",
                                 "domains_data": '["nike.com"]', "countries_data": '["US", "CA"]'}])
        assert df.loc[0, "features"] == "Nike Fashion nike.com nike.com US CA"
        assert df.loc[0, "countries"] == ["US", "CA"]

    def test_single_store_has_no_matrix(self):
        assert similarity_matrix(build_store_frame([{"id": 1, "name": "Nike"}])) is None


def test_similarity_reasons():
    store = {"category": "Fashion", "countries": ["US", "DE"], "website": "nike.com"}
    other = {"category": "Fashion", "countries": ["DE"], "website": "adidas.com"}
    assert similarity_reasons(store, other) == [
        "Same category: Fashion",
        "Ships to the same countries: DE",
        "Same domain suffix: .com",
    ]
    unrelated = {"category": "Food", "countries": [], "website": "food.io"}
    assert similarity_reasons(store, unrelated) == ["Similar store profile"]


class TestSimilarStoresAnalyzer:
    """Similar stores saved for the store pages."""

    def test_analyze_all(self, db, make_store):
        ids = seed_stores(make_store)
        assert SimilarStoresAnalyzer().analyze_all() == {"processed": 3, "errors": 0}

        similar = db_models.get_similar_stores(ids["nike"])
        assert similar[0]["id"] == ids["adidas"]
        assert "Same category: Fashion" in similar[0]["reasons"]
        assert all(s["id"] != ids["nike"] for s in similar)

    def test_analyze_single(self, db, make_store):
        ids = seed_stores(make_store)
        result = SimilarStoresAnalyzer().analyze_single("adidas")
        assert list(result) == [ids["adidas"]]
        assert result[ids["adidas"]][0]["name"] == "Nike"
        assert db_models.get_similar_stores(ids["nike"]) == []

    def test_analyze_single_unknown_store(self, db, make_store):
        seed_stores(make_store)
        assert SimilarStoresAnalyzer().analyze_single("nope") is None

    def test_not_enough_stores(self, db, make_store):
        make_store("Lonely")
        assert SimilarStoresAnalyzer().analyze_all() == {"processed": 0, "errors": 0}
        assert SimilarStoresAnalyzer().analyze_single("lonely") == {}
