import random
import unittest

from basedintern.autonomy.dedupe import (
    calculate_similarity,
    fingerprint_content,
    is_content_too_similar,
    most_similar_recent,
    normalize_for_fingerprint,
    pick_non_recent_index,
    remember_social_post,
)
from basedintern.autonomy.state import default_state, remember_bounded


class FingerprintTests(unittest.TestCase):
    def test_fingerprint_is_stable_sha256_hex(self) -> None:
        fp = fingerprint_content("Hello world")
        self.assertEqual(fp, fingerprint_content("Hello world"))
        self.assertEqual(len(fp), 64)
        int(fp, 16)

    def test_normalization_ignores_case_punctuation_and_urls(self) -> None:
        self.assertEqual(
            normalize_for_fingerprint("GM, frens!  Check https://example.com/x?y=1 now."),
            "gm frens check now",
        )
        self.assertEqual(fingerprint_content("GM frens"), fingerprint_content("gm,   FRENS!"))

    def test_different_text_different_fingerprint(self) -> None:
        self.assertNotEqual(fingerprint_content("buy"), fingerprint_content("sell"))


class SimilarityTests(unittest.TestCase):
    def test_jaccard_overlap(self) -> None:
        self.assertEqual(calculate_similarity("a b c d", "a b c d"), 1.0)
        self.assertAlmostEqual(calculate_similarity("a b c d", "a b x y"), 2 / 6)
        self.assertEqual(calculate_similarity("a b", "c d"), 0.0)
        self.assertEqual(calculate_similarity("", ""), 1.0)

    def test_similarity_is_symmetric(self) -> None:
        a = "the intern filed a receipt today"
        b = "today the intern filed nothing"
        self.assertEqual(calculate_similarity(a, b), calculate_similarity(b, a))

    def test_too_similar_checks_recent_window(self) -> None:
        state = default_state()
        remember_social_post(state, "the intern filed a receipt for the desk today")
        for i in range(12):
            remember_social_post(state, f"unrelated filler post number {i}")
        candidate = "the intern filed a receipt for the desk today again"
        # Old post has scrolled out of the 10-entry lookback.
        self.assertFalse(is_content_too_similar(state, candidate, 0.75))
        self.assertTrue(is_content_too_similar(state, candidate, 0.75, lookback=20))

    def test_most_similar_reports_match(self) -> None:
        state = default_state()
        remember_social_post(state, "alpha beta gamma")
        remember_social_post(state, "delta epsilon")
        score, match = most_similar_recent(state, "alpha beta gamma delta")
        self.assertEqual(match, "alpha beta gamma")
        self.assertAlmostEqual(score, 0.75)

    def test_empty_history_is_never_similar(self) -> None:
        self.assertFalse(is_content_too_similar(default_state(), "anything", 0.0))


class BoundedListTests(unittest.TestCase):
    def test_lru_bound_and_promotion(self) -> None:
        items = []
        for i in range(60):
            items = remember_bounded(items, f"fp{i}", 50)
        self.assertEqual(len(items), 50)
        self.assertEqual(items[0], "fp10")
        self.assertNotIn("fp9", items)

        items = remember_bounded(items, "fp20", 50)
        self.assertEqual(len(items), 50)
        self.assertEqual(items[-1], "fp20")
        self.assertEqual(items.count("fp20"), 1)

    def test_remember_social_post_records_text_and_fingerprint(self) -> None:
        state = default_state()
        remember_social_post(state, "gm")
        self.assertEqual(state["recent_social_post_texts"], ["gm"])
        self.assertEqual(state["recent_social_post_fingerprints"], [fingerprint_content("gm")])


class PickNonRecentIndexTests(unittest.TestCase):
    def test_never_picks_recent_when_alternatives_exist(self) -> None:
        rng = random.Random(7)
        for _ in range(200):
            idx = pick_non_recent_index(5, [0, 1, 2], lookback=3, rng=rng)
            self.assertIn(idx, {3, 4})

    def test_only_last_lookback_entries_count(self) -> None:
        rng = random.Random(1)
        seen = {pick_non_recent_index(3, [0, 1, 2], lookback=1, rng=rng) for _ in range(100)}
        self.assertEqual(seen, {0, 1})

    def test_falls_back_to_least_recently_used(self) -> None:
        self.assertEqual(pick_non_recent_index(3, [2, 0, 1], lookback=3), 2)
        self.assertEqual(pick_non_recent_index(2, [0, 1, 0, 1], lookback=5), 0)

    def test_seeded_rng_is_deterministic(self) -> None:
        first = [pick_non_recent_index(10, [1, 2], rng=random.Random(42)) for _ in range(5)]
        second = [pick_non_recent_index(10, [1, 2], rng=random.Random(42)) for _ in range(5)]
        self.assertEqual(first, second)

    def test_rejects_empty_pool(self) -> None:
        with self.assertRaises(ValueError):
            pick_non_recent_index(0, [])


if __name__ == "__main__":
    unittest.main()
