import unittest

from catalog_fixtures import make_record, make_store
from medkb.services.search import alternatives_for, normalize_query, search


class SearchServiceTests(unittest.TestCase):
    def setUp(self):
        # Ace lists Napa as an alternative, so it substring-matches "napa" too
        self.ace = make_record("para-002", brand_name="Ace", alternatives=["Napa", "Fast"])
        self.napa = make_record("para-001", brand_name="Napa", alternatives=["Ace"])
        self.amoxin = make_record(
            "amoxi-001",
            generic_name="Amoxicillin",
            brand_name="Amoxin",
            therapeutic_class="Beta-lactam Antibiotic",
            keywords_bn=["অ্যামোক্সিসিলিন"],
        )
        self.store = make_store(self.ace, self.napa, self.amoxin)

    def test_normalize_query(self):
        self.assertEqual(normalize_query("  NaPa "), "napa")
        self.assertEqual(normalize_query(None), "")

    def test_queries_shorter_than_two_characters_return_nothing(self):
        for query in ("", " ", "a", "  n  "):
            self.assertEqual(search(self.store, query), [], query)

    def test_two_character_query_is_searched(self):
        store = make_store(make_record("abx-1", brand_name="Abacus"))
        self.assertEqual([record.id for record in search(store, "ab")], ["abx-1"])

    def test_exact_brand_match_ranks_first(self):
        results = search(self.store, "napa", 10)
        self.assertEqual([record.id for record in results], ["para-001", "para-002"])

    def test_exact_generic_match_keeps_catalog_order_within_tier(self):
        results = search(self.store, "PARACETAMOL")
        self.assertEqual([record.id for record in results], ["para-002", "para-001"])

    def test_partial_word_matches(self):
        self.assertEqual([record.id for record in search(self.store, "cillin")], ["amoxi-001"])

    def test_localized_keywords_are_searched(self):
        self.assertEqual([record.id for record in search(self.store, "অ্যামোক্সি")], ["amoxi-001"])

    def test_truncation_happens_after_ranking(self):
        decoys = [make_record(f"d-{index}", brand_name=f"Napa Extra {index}") for index in range(5)]
        store = make_store(*decoys, self.napa)
        results = search(store, "napa", 1)
        self.assertEqual([record.id for record in results], ["para-001"])

    def test_ordering_is_stable_across_calls(self):
        first = [record.id for record in search(self.store, "pa")]
        second = [record.id for record in search(self.store, "pa")]
        self.assertEqual(first, second)

    def test_non_positive_limit(self):
        self.assertEqual(search(self.store, "napa", 0), [])

    def test_alternatives_for_uses_generic_name_only(self):
        results = alternatives_for(self.store, "paracetamol")
        self.assertEqual([record.id for record in results], ["para-002", "para-001"])
        self.assertEqual(alternatives_for(self.store, "Fast"), [])
        self.assertEqual(alternatives_for(self.store, " "), [])


if __name__ == "__main__":
    unittest.main()
