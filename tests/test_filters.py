import unittest

from chatcore.errors import ValidationError
from chatcore.filters import apply_query, matches


RECORDS = [
    {"id": "a", "user_id": "u1", "score": 3, "kind": "group"},
    {"id": "b", "user_id": "u2", "score": 1, "kind": "individual"},
    {"id": "c", "user_id": "u1", "score": 3, "kind": "individual"},
    {"id": "d", "user_id": "u3"},
]


class MatchesTests(unittest.TestCase):
    def test_plain_fields_are_equality_and_combined(self):
        self.assertTrue(matches(RECORDS[0], {"user_id": "u1", "kind": "group"}))
        self.assertFalse(matches(RECORDS[0], {"user_id": "u1", "kind": "individual"}))
        self.assertTrue(matches(RECORDS[0], None))

    def test_missing_field_equals_none(self):
        self.assertTrue(matches(RECORDS[3], {"score": None}))
        self.assertFalse(matches(RECORDS[3], {"score": {"gt": 0}}))

    def test_operators(self):
        record = RECORDS[0]
        self.assertTrue(matches(record, {"user_id": {"not": "u2"}}))
        self.assertTrue(matches(record, {"id": {"in": ["a", "z"]}}))
        self.assertTrue(matches(record, {"id": {"not_in": ["b"]}}))
        self.assertTrue(matches(record, {"score": {"gte": 3, "lt": 4}}))
        self.assertFalse(matches(record, {"score": {"gt": 3}}))
        self.assertTrue(matches(record, {"score": {"lte": 3, "eq": 3}}))

    def test_and_or(self):
        where = {"OR": [{"user_id": "u2"}, {"AND": [{"user_id": "u1"}, {"kind": "individual"}]}]}
        self.assertEqual([r["id"] for r in RECORDS if matches(r, where)], ["b", "c"])

    def test_unknown_operator_rejected(self):
        with self.assertRaises(ValidationError):
            matches(RECORDS[0], {"score": {"between": [1, 2]}})
        with self.assertRaises(ValidationError):
            matches(RECORDS[0], {"OR": {"user_id": "u1"}})


class ApplyQueryTests(unittest.TestCase):
    def test_order_desc_keeps_ties_in_input_order(self):
        rows = apply_query(RECORDS[:3], order_by=("score", "desc"))
        self.assertEqual([r["id"] for r in rows], ["a", "c", "b"])

    def test_none_sorts_first_ascending(self):
        rows = apply_query(RECORDS, order_by=("score", "asc"))
        self.assertEqual([r["id"] for r in rows], ["d", "b", "a", "c"])

    def test_limit_applies_after_ordering(self):
        rows = apply_query(RECORDS, {"user_id": "u1"}, order_by=("id", "desc"), limit=1)
        self.assertEqual([r["id"] for r in rows], ["c"])

    def test_results_are_copies(self):
        rows = apply_query(RECORDS, {"id": "a"})
        rows[0]["score"] = 99
        self.assertEqual(RECORDS[0]["score"], 3)

    def test_bad_direction_or_limit_rejected(self):
        with self.assertRaises(ValidationError):
            apply_query(RECORDS, order_by=("score", "sideways"))
        with self.assertRaises(ValidationError):
            apply_query(RECORDS, limit=-1)


if __name__ == "__main__":
    unittest.main()
