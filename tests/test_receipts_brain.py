import random
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch

import requests

from basedintern.autonomy.brain import (
    BrainContext,
    build_messages,
    fallback_policy,
    parse_json_object_lenient,
    propose_action,
)
from basedintern.autonomy.config import load_config
from basedintern.autonomy.receipts import (
    MOOD_LINES,
    ReceiptInput,
    build_receipt_message,
    format_units,
    pick_mood_line,
)
from basedintern.autonomy.state import default_state


NOW = datetime(2026, 1, 15, 12, 0, 5, tzinfo=timezone.utc)
WALLET = "0x00000000000000000000000000000000000000aa"


class _Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


def _chat_payload(content):
    return {"choices": [{"message": {"content": content}}]}


def _ctx(token_amount=0):
    return BrainContext(wallet=WALLET, eth_wei=10**18, token_amount=token_amount, token_decimals=18)


class FormatUnitsTests(unittest.TestCase):
    def test_truncates_and_strips_zeros(self) -> None:
        self.assertEqual(format_units(1234567890123456789, 18, 6), "1.234567")
        self.assertEqual(format_units(5 * 10**17, 18, 6), "0.5")
        self.assertEqual(format_units(0, 18, 6), "0")
        self.assertEqual(format_units(1500 * 10**18 + 10**16, 18, 2), "1500.01")
        self.assertEqual(format_units(1999, 3, 2), "1.99")
        self.assertEqual(format_units(42, 0, 2), "42")


class ReceiptTests(unittest.TestCase):
    def test_receipt_layout(self) -> None:
        receipt = ReceiptInput(
            action="BUY",
            wallet=WALLET,
            eth_wei=5 * 10**17,
            token_amount=1500 * 10**18,
            token_decimals=18,
            tx_hash="0xfeed",
            dry_run=False,
        )
        lines = build_receipt_message(receipt, default_state(NOW), now=NOW, rng=random.Random(3)).split("\n")
        self.assertEqual(lines[0], "BASED INTERN REPORT")
        self.assertEqual(
            lines[1:9],
            [
                "ts: 2026-01-15T12:00:05Z",
                "action: BUY",
                f"wallet: {WALLET}",
                "eth: 0.5",
                "intern: 1500",
                "price: unknown",
                "tx: 0xfeed",
                "mode: LIVE",
            ],
        )
        self.assertTrue(lines[9].startswith("note: "))
        self.assertIn(lines[9][len("note: "):], MOOD_LINES)

    def test_dry_run_hides_tx(self) -> None:
        receipt = ReceiptInput("HOLD", WALLET, 0, 0, 18, price_text="$0.01", tx_hash="0xfeed", dry_run=True)
        message = build_receipt_message(receipt, default_state(NOW), now=NOW)
        self.assertIn("tx: -", message)
        self.assertIn("mode: SIMULATED", message)
        self.assertIn("price: $0.01", message)

    def test_mood_line_does_not_repeat_within_lookback(self) -> None:
        state = default_state(NOW)
        rng = random.Random(11)
        picks = [pick_mood_line(state, rng=rng) for _ in range(30)]
        for i in range(3, len(picks)):
            self.assertNotIn(picks[i], picks[i - 3 : i])
        self.assertLessEqual(len(state["recent_mood_indices"]), 20)


class BrainTests(unittest.TestCase):
    def test_fallback_holds_when_any_safety_flag_is_set(self) -> None:
        proposal = fallback_policy(load_config(), _ctx())
        self.assertEqual(proposal.action, "HOLD")
        self.assertEqual(proposal.rationale, "Safety mode active (or trading disabled). Holding.")

    def test_fallback_buys_without_tokens_and_sells_with_them(self) -> None:
        cfg = replace(load_config(), trading_enabled=True, kill_switch=False, dry_run=False)
        self.assertEqual(fallback_policy(cfg, _ctx(token_amount=0)).action, "BUY")
        self.assertEqual(fallback_policy(cfg, _ctx(token_amount=5)).action, "SELL")

    def test_lenient_parse_handles_fences_and_chatter(self) -> None:
        self.assertEqual(parse_json_object_lenient('{"action": "HOLD"}'), {"action": "HOLD"})
        self.assertEqual(
            parse_json_object_lenient('```json\n{"action": "SELL", "rationale": "x"}\n```'),
            {"action": "SELL", "rationale": "x"},
        )
        self.assertEqual(
            parse_json_object_lenient('Sure! {"action": "BUY", "rationale": "a {nested} brace"} hope that helps'),
            {"action": "BUY", "rationale": "a {nested} brace"},
        )
        with self.assertRaises(ValueError):
            parse_json_object_lenient("no json here")
        with self.assertRaises(ValueError):
            parse_json_object_lenient("[1, 2]")

    def test_messages_carry_guardrail_context(self) -> None:
        messages = build_messages(load_config(), _ctx())
        self.assertEqual(messages[0]["role"], "system")
        self.assertIn('"eth": "1"', messages[1]["content"])

    @patch("basedintern.autonomy.brain.requests.post")
    def test_no_api_key_skips_llm(self, mock_post):
        cfg = replace(load_config(), openai_api_key=None)
        self.assertEqual(propose_action(cfg, _ctx()).action, "HOLD")
        mock_post.assert_not_called()

    @patch("basedintern.autonomy.brain.requests.post")
    def test_llm_proposal_is_used(self, mock_post):
        mock_post.return_value = _Resp(payload=_chat_payload('{"action": "sell", "rationale": "take a little off"}'))
        cfg = replace(load_config(), openai_api_key="sk-test", openai_base_url="https://llm.example/v1")
        proposal = propose_action(cfg, _ctx())
        self.assertEqual(proposal.action, "SELL")
        self.assertEqual(proposal.rationale, "take a little off")
        self.assertEqual(mock_post.call_args.args[0], "https://llm.example/v1/chat/completions")
        self.assertEqual(mock_post.call_args.kwargs["headers"]["Authorization"], "Bearer sk-test")

    @patch("basedintern.autonomy.brain.requests.post")
    def test_llm_failures_fall_back(self, mock_post):
        cfg = replace(load_config(), openai_api_key="sk-test", trading_enabled=False)
        failures = [
            _Resp(status_code=500, text="upstream"),
            _Resp(payload=_chat_payload('{"action": "YOLO"}')),
            _Resp(payload=_chat_payload("I would rather not")),
            _Resp(payload={"choices": []}),
            requests.ConnectionError("offline"),
        ]
        for failure in failures:
            if isinstance(failure, Exception):
                mock_post.side_effect = failure
            else:
                mock_post.side_effect = None
                mock_post.return_value = failure
            with self.assertLogs("basedintern.autonomy", level="WARNING"):
                proposal = propose_action(cfg, _ctx())
            self.assertEqual(proposal.action, "HOLD")


if __name__ == "__main__":
    unittest.main()
