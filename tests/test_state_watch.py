import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from basedintern.autonomy.state import (
    JsonStateStore,
    default_state,
    has_seen_news,
    load_state,
    remember_news_seen,
    reset_daily_if_needed,
)
from basedintern.autonomy.watch import (
    ActivitySnapshot,
    apply_snapshot,
    parse_min_eth_delta,
    parse_min_token_delta,
    watch_for_activity,
)


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
WALLET = "0x00000000000000000000000000000000000000aa"
TOKEN = "0x00000000000000000000000000000000000000bb"


class _Reader:
    def __init__(self, nonce=1, eth_wei=10**18, token_raw=5 * 10**21, block=100, failing=()):
        self.nonce = nonce
        self.eth_wei = eth_wei
        self.token_raw = token_raw
        self.block = block
        self.failing = set(failing)

    def _maybe_fail(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def get_nonce(self, address):
        self._maybe_fail("nonce")
        return self.nonce

    def get_balance(self, address):
        self._maybe_fail("balance")
        return self.eth_wei

    def get_token_balance(self, token, address):
        self._maybe_fail("token")
        return self.token_raw

    def get_block_number(self):
        self._maybe_fail("block")
        return self.block


class StateStoreTests(unittest.TestCase):
    def test_missing_file_loads_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            state = load_state(Path(tmp) / "state.json")
        self.assertEqual(state["trades_executed_today"], 0)
        self.assertIn("x_api", state["channels"])

    def test_round_trip_and_default_merge(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "state.json"
            store = JsonStateStore(path)
            state = default_state(NOW)
            state["trades_executed_today"] = 1
            state["channels"]["moltbook"]["failure_count"] = 2
            store.save(state)
            self.assertEqual(store.load(), state)

            path.write_text(json.dumps({"day_key": "2026-01-14", "channels": {"x_api": {"failure_count": 1}}}))
            merged = store.load()
            self.assertEqual(merged["day_key"], "2026-01-14")
            self.assertEqual(merged["channels"]["x_api"]["failure_count"], 1)
            self.assertEqual(merged["channels"]["x_api"]["last_posted_fingerprints"], {})
            self.assertEqual(merged["recent_social_post_texts"], [])
            self.assertEqual([p.name for p in path.parent.iterdir()], ["state.json"])

    def test_non_object_state_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state.json"
            path.write_text("[1, 2, 3]")
            with self.assertRaises(ValueError):
                load_state(path)

    def test_daily_reset_only_moves_forward(self) -> None:
        state = default_state(NOW)
        state["trades_executed_today"] = 2
        self.assertFalse(reset_daily_if_needed(state, NOW + timedelta(hours=3)))
        self.assertFalse(reset_daily_if_needed(state, NOW - timedelta(days=2)))
        self.assertEqual(state["trades_executed_today"], 2)
        self.assertTrue(reset_daily_if_needed(state, NOW + timedelta(days=1)))
        self.assertEqual(state["day_key"], "2026-01-16")
        self.assertEqual(state["trades_executed_today"], 0)

    def test_news_fingerprints_are_bounded(self) -> None:
        state = default_state(NOW)
        for i in range(205):
            remember_news_seen(state, f"news{i}")
        self.assertEqual(len(state["seen_news_fingerprints"]), 200)
        self.assertFalse(has_seen_news(state, "news0"))
        self.assertTrue(has_seen_news(state, "news204"))


class WatchTests(unittest.TestCase):
    def _watch(self, reader, snapshot, token=TOKEN):
        return watch_for_activity(reader, WALLET, token, snapshot, parse_min_eth_delta(""), parse_min_token_delta("", 18))

    def test_first_run_records_baseline_without_change(self) -> None:
        result = self._watch(_Reader(), ActivitySnapshot())
        self.assertFalse(result.changed)
        self.assertEqual(result.snapshot.nonce, 1)
        self.assertEqual(result.snapshot.block_number, 100)

    def test_nonce_change_is_activity(self) -> None:
        baseline = self._watch(_Reader(nonce=1), ActivitySnapshot()).snapshot
        result = self._watch(_Reader(nonce=2), baseline)
        self.assertTrue(result.changed)
        self.assertTrue(result.nonce_changed)
        self.assertEqual(result.reasons, ["nonce changed: 1 -> 2"])

    def test_small_balance_moves_are_ignored(self) -> None:
        baseline = self._watch(_Reader(), ActivitySnapshot()).snapshot
        result = self._watch(_Reader(eth_wei=10**18 + 10**12, token_raw=5 * 10**21 + 10**20), baseline)
        self.assertFalse(result.changed)

    def test_balance_deltas_at_threshold_are_activity(self) -> None:
        baseline = self._watch(_Reader(), ActivitySnapshot()).snapshot
        result = self._watch(_Reader(eth_wei=10**18 - 10**13, token_raw=5 * 10**21 + 1000 * 10**18), baseline)
        self.assertTrue(result.eth_changed)
        self.assertEqual(result.eth_delta, 10**13)
        self.assertTrue(result.token_changed)
        self.assertEqual(result.token_delta, 1000 * 10**18)

    def test_failed_read_keeps_previous_value(self) -> None:
        baseline = self._watch(_Reader(), ActivitySnapshot()).snapshot
        with self.assertLogs("basedintern.autonomy", level="WARNING"):
            result = self._watch(_Reader(nonce=9, failing={"nonce", "token"}), baseline)
        self.assertFalse(result.changed)
        self.assertEqual(result.snapshot.nonce, 1)
        self.assertEqual(result.snapshot.token_raw, 5 * 10**21)

    def test_no_token_configured_skips_token_read(self) -> None:
        result = self._watch(_Reader(failing={"token"}), ActivitySnapshot(), token=None)
        self.assertIsNone(result.snapshot.token_raw)

    def test_apply_snapshot_stores_balances_as_strings(self) -> None:
        state = default_state(NOW)
        apply_snapshot(state, self._watch(_Reader(), ActivitySnapshot()))
        self.assertEqual(state["last_seen_nonce"], 1)
        self.assertEqual(state["last_seen_eth_wei"], str(10**18))
        self.assertEqual(state["last_seen_token_raw"], str(5 * 10**21))
        self.assertEqual(ActivitySnapshot.from_state(state).eth_wei, 10**18)

    def test_min_delta_parsing(self) -> None:
        self.assertEqual(parse_min_eth_delta("0.001"), 10**15)
        self.assertEqual(parse_min_eth_delta("garbage"), 10**13)
        self.assertEqual(parse_min_token_delta("5", 6), 5 * 10**6)
        self.assertEqual(parse_min_token_delta("0", 6), 1000 * 10**6)


if __name__ == "__main__":
    unittest.main()
