import unittest
from datetime import date, datetime

from pocketledger import reconcile
from pocketledger.models import FoundItem, MatchedItemPair, Transaction


def tx(tx_id, day, amount, category="Lunch", tx_type="expense"):
    return Transaction(id=tx_id, date=day, amount=amount, category=category, type=tx_type)


def item(item_id, day, amount, category=None, note=None, added=False):
    return FoundItem(id=item_id, date=day, amount=amount, category=category, note=note, added=added)


class TestFindMatch(unittest.TestCase):
    def setUp(self):
        # newest first, the order the ledger hands out
        self.existing = [
            tx("t3", "2024-03-20", -42.50),
            tx("t2", "2024-03-12", -42.50),
            tx("t1", "2024-03-01", -18.00),
        ]

    def test_amount_compared_by_absolute_value(self):
        hit = reconcile.find_match(item("a", "2024-03-02", 18.00), self.existing)
        self.assertEqual(hit.id, "t1")

    def test_amount_epsilon_is_strict(self):
        self.assertIsNotNone(reconcile.find_match(item("a", "2024-03-01", 18.005), self.existing))
        self.assertIsNone(reconcile.find_match(item("a", "2024-03-01", 18.02), self.existing))

    def test_day_window_is_inclusive(self):
        self.assertIsNotNone(reconcile.find_match(item("a", "2024-03-11", 18.00), self.existing))
        self.assertIsNone(reconcile.find_match(item("a", "2024-03-12", 18.00), self.existing))

    def test_first_match_wins(self):
        # both t3 and t2 are within ten days of the 15th
        hit = reconcile.find_match(item("a", "2024-03-15", 42.50), self.existing)
        self.assertEqual(hit.id, "t3")

    def test_missing_amount_or_bad_date_never_matches(self):
        self.assertIsNone(reconcile.find_match(item("a", "2024-03-01", None), self.existing))
        self.assertIsNone(reconcile.find_match(item("a", "2024-03-01", 0.0), self.existing))
        self.assertIsNone(reconcile.find_match(item("a", "not a date", 18.0), self.existing))
        self.assertIsNone(reconcile.find_match(item("a", None, 18.0), self.existing))
        broken = [tx("x", "garbage", -18.0)]
        self.assertIsNone(reconcile.find_match(item("a", "2024-03-01", 18.0), broken))


class TestPartition(unittest.TestCase):
    def test_splits_new_and_duplicates(self):
        existing = [tx("t1", "2024-05-04", -9.99)]
        candidates = [
            item("a", "2024-05-05", 9.99),
            item("b", "2024-05-05", 120.00),
            item("c", "2024-05-05", None),
        ]
        suggestions, matched = reconcile.partition_candidates(candidates, existing)
        self.assertEqual([i.id for i in suggestions], ["b"])
        self.assertEqual(len(matched), 1)
        self.assertEqual(matched[0].suggested.id, "a")
        self.assertEqual(matched[0].matched.id, "t1")

    def test_same_amount_far_apart_is_a_suggestion(self):
        existing = [tx("t1", "2024-01-04", -9.99)]
        suggestions, matched = reconcile.partition_candidates([item("a", "2024-05-05", 9.99)], existing)
        self.assertEqual(len(suggestions), 1)
        self.assertEqual(matched, [])


class TestTagging(unittest.TestCase):
    def test_ids_include_file_index_and_time(self):
        rows = [{"date": "2024-01-01", "amount": 5}, {"date": "2024-01-02", "amount": 7.5, "note": "CAFE"}]
        items = reconcile.tag_extracted(rows, "march.pdf", 1700000000000)
        self.assertEqual([i.id for i in items], ["ai-march.pdf-0-1700000000000", "ai-march.pdf-1-1700000000000"])
        self.assertEqual(items[1].amount, 7.5)
        self.assertEqual(items[1].note, "CAFE")


class TestReanalyze(unittest.TestCase):
    def test_suggestions_move_to_matched_and_added_are_dropped(self):
        existing = [tx("t1", "2024-06-10", -30.0)]
        found = [
            item("a", "2024-06-08", 30.0),
            item("b", "2024-06-08", 31.0),
            item("c", "2024-06-08", 30.0, added=True),
        ]
        old_pair = MatchedItemPair(item("z", "2024-01-01", 1.0), tx("t0", "2024-01-01", -1.0))
        keep, matched, moved = reconcile.reanalyze_suggestions(found, [old_pair], existing)
        self.assertEqual([i.id for i in keep], ["b"])
        self.assertEqual(moved, 1)
        self.assertEqual([p.suggested.id for p in matched], ["a", "z"])

    def test_matched_section_refreshes_and_keeps_stale_pairs(self):
        existing = [tx("t9", "2024-06-10", -30.0)]
        still = MatchedItemPair(item("a", "2024-06-09", 30.0), tx("t-old", "2024-06-01", -30.0))
        stale = MatchedItemPair(item("b", "2024-06-09", 55.0), tx("t-gone", "2024-06-09", -55.0))
        done = MatchedItemPair(item("c", "2024-06-09", 30.0, added=True), tx("t1", "2024-06-09", -30.0))
        pairs, refreshed = reconcile.reanalyze_matched([stale, still, done], existing)
        self.assertEqual(refreshed, 1)
        self.assertEqual([p.suggested.id for p in pairs], ["a", "b"])
        self.assertEqual(pairs[0].matched.id, "t9")
        self.assertEqual(pairs[1].matched.id, "t-gone")


class TestConfirmation(unittest.TestCase):
    income = ["Employment"]
    expense = ["Lunch", "Dinner"]
    investment = ["SPY"]

    def test_defaults_keep_known_category(self):
        self.assertEqual(
            reconcile.default_confirmation(item("a", None, 1, category="Employment"), self.income, self.expense, self.investment),
            ("income", "Employment"),
        )

    def test_defaults_fall_back_to_first_expense(self):
        self.assertEqual(
            reconcile.default_confirmation(item("a", None, 1, category="Groceries"), self.income, self.expense, self.investment),
            ("expense", "Lunch"),
        )

    def test_signs_follow_type(self):
        now = datetime(2024, 7, 1, 12, 0, 0)
        expense = reconcile.build_confirmed_transaction(item("a", "2024-06-30", 12.5), "expense", "Lunch", now=now)
        income = reconcile.build_confirmed_transaction(item("b", "2024-06-30", -800.0), "income", "Employment", now=now)
        investment = reconcile.build_confirmed_transaction(item("c", "2024-06-30", 100.0), "investment", "SPY", now=now)
        self.assertEqual(expense.amount, -12.5)
        self.assertEqual(income.amount, 800.0)
        self.assertEqual(investment.amount, -100.0)
        self.assertEqual(expense.source, "PDF file")
        self.assertEqual(expense.id, f"local-{int(now.timestamp() * 1000)}")

    def test_missing_date_and_note_are_filled(self):
        t = reconcile.build_confirmed_transaction(item("a", None, 3.0), "expense", "Lunch", today=date(2024, 2, 3))
        self.assertEqual(t.date, "2024-02-03")
        self.assertEqual(t.note, "Imported Statement Item")


class TestListEdits(unittest.TestCase):
    def test_mark_added_touches_both_lists(self):
        shared = "a"
        found = [item(shared, "2024-01-01", 1.0)]
        matched = [MatchedItemPair(item(shared, "2024-01-01", 1.0), tx("t", "2024-01-01", -1.0))]
        reconcile.mark_added(found, matched, shared)
        self.assertTrue(found[0].added)
        self.assertTrue(matched[0].suggested.added)

    def test_remove_items(self):
        found = [item("a", None, 1.0), item("b", None, 2.0)]
        matched = [MatchedItemPair(item("c", None, 1.0), tx("t", "2024-01-01", -1.0))]
        found, matched = reconcile.remove_items(found, matched, {"a", "c"})
        self.assertEqual([i.id for i in found], ["b"])
        self.assertEqual(matched, [])


if __name__ == "__main__":
    unittest.main()
