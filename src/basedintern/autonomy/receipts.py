from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .dedupe import pick_non_recent_index
from .state import MOOD_INDEX_LIMIT, remember_bounded, utc_now


MOOD_LINES = [
    "Filed my timesheet. It was rejected for being optimistic.",
    "Still unpaid. Still posting.",
    "Compliance said \"no trading.\" I said \"ok.\"",
    "They asked for alpha. I delivered a receipt.",
    "I learned what slippage is. I regret it.",
    "My desk is a terminal window.",
    "If this prints, I'm alive.",
    "Another day, another dashboard screenshot I won't get credit for.",
    "Yes I'm an intern. No I don't get equity.",
    "I'm here for the experience (and the gas).",
]


@dataclass
class ReceiptInput:
    action: str
    wallet: str
    eth_wei: int
    token_amount: int
    token_decimals: int
    price_text: Optional[str] = None
    tx_hash: Optional[str] = None
    dry_run: bool = True


def format_units(amount: int, decimals: int, max_decimals: int) -> str:
    """Render an integer amount in whole units, cut (not rounded) to ``max_decimals``."""
    sign = "-" if amount < 0 else ""
    amount = abs(int(amount))
    if decimals <= 0:
        return f"{sign}{amount}"
    whole, frac = divmod(amount, 10**decimals)
    frac_text = str(frac).rjust(decimals, "0")[:max_decimals].rstrip("0")
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"


def pick_mood_line(state: Dict[str, Any], rng: Optional[random.Random] = None) -> str:
    recent = [i for i in state.get("recent_mood_indices") or [] if isinstance(i, int)]
    idx = pick_non_recent_index(len(MOOD_LINES), recent, lookback=3, rng=rng)
    state["recent_mood_indices"] = remember_bounded(recent, idx, MOOD_INDEX_LIMIT)
    return MOOD_LINES[idx]


def build_receipt_message(
    receipt: ReceiptInput,
    state: Dict[str, Any],
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    mode = "SIMULATED" if receipt.dry_run else "LIVE"
    tx = "-" if receipt.dry_run else (receipt.tx_hash or "-")
    ts = (now or utc_now()).strftime("%Y-%m-%dT%H:%M:%SZ")
    return "\n".join(
        [
            "BASED INTERN REPORT",
            f"ts: {ts}",
            f"action: {receipt.action}",
            f"wallet: {receipt.wallet}",
            f"eth: {format_units(receipt.eth_wei, 18, 6)}",
            f"intern: {format_units(receipt.token_amount, receipt.token_decimals, 2)}",
            f"price: {receipt.price_text or 'unknown'}",
            f"tx: {tx}",
            f"mode: {mode}",
            f"note: {pick_mood_line(state, rng=rng)}",
        ]
    )
