"""Trading guardrails.

Every proposal from the brain passes through ``enforce_guardrails`` before a
transaction is considered. The rules run in a fixed order and the first match
turns the proposal into a HOLD with a ``blocked_reason``. Amounts are integers
in the smallest on-chain unit; the only decimal parsing is the human readable
spend cap, and a cap that does not parse counts as zero.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .config import Config
from .state import reset_daily_if_needed, to_ms, utc_day_key


VALID_ACTIONS = {"BUY", "SELL", "HOLD"}
BPS_DENOMINATOR = 10_000


@dataclass
class ProposedAction:
    action: str
    rationale: str


@dataclass
class Decision:
    action: str
    rationale: str
    blocked_reason: Optional[str]
    buy_spend_wei: Optional[int]
    sell_amount: Optional[int]
    should_execute: bool


@dataclass
class DecisionContext:
    cfg: Config
    state: Dict[str, Any]
    now: datetime
    eth_wei: int
    token_amount: int


def parse_units(value: Any, decimals: int) -> int:
    """Convert a decimal string like ``"0.5"`` to integer units, or 0 if invalid."""
    text = str(value if value is not None else "").strip()
    if not text:
        return 0
    try:
        amount = Decimal(text)
        if not amount.is_finite() or amount < 0:
            return 0
        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            # More precision than the unit supports.
            return 0
        return int(scaled)
    except (ArithmeticError, ValueError):
        return 0


def parse_ether(value: Any) -> int:
    return parse_units(value, 18)


def _hold(blocked_reason: str, rationale: str) -> Decision:
    return Decision(
        action="HOLD",
        rationale=rationale,
        blocked_reason=blocked_reason,
        buy_spend_wei=None,
        sell_amount=None,
        should_execute=False,
    )


def _trades_today(state: Dict[str, Any], now: datetime) -> int:
    day_key = state.get("day_key")
    # Only a day strictly before today resets the count; a key from a clock
    # that ran ahead keeps its trades on the books.
    if not isinstance(day_key, str) or day_key < utc_day_key(now):
        return 0
    count = state.get("trades_executed_today", 0)
    return int(count) if isinstance(count, (int, float)) else 0


def enforce_guardrails(proposal: ProposedAction, ctx: DecisionContext) -> Decision:
    cfg = ctx.cfg
    state = ctx.state
    rationale = proposal.rationale

    if not cfg.trading_enabled:
        return _hold("trading disabled (TRADING_ENABLED=false)", rationale)
    if cfg.kill_switch:
        return _hold("kill switch engaged (KILL_SWITCH=true)", rationale)
    if cfg.dry_run:
        return _hold("dry run (DRY_RUN=true)", rationale)
    if not cfg.router_configured:
        return _hold("router not configured (set ROUTER_TYPE + ROUTER_ADDRESS)", rationale)

    if cfg.daily_trade_cap <= 0:
        return _hold("daily trade cap is 0 (DAILY_TRADE_CAP=0)", rationale)
    trades_today = _trades_today(state, ctx.now)
    if trades_today >= cfg.daily_trade_cap:
        return _hold(f"daily cap reached ({trades_today}/{cfg.daily_trade_cap})", rationale)

    last_trade_ms = state.get("last_executed_trade_at_ms")
    if isinstance(last_trade_ms, (int, float)):
        elapsed_min = (to_ms(ctx.now) - last_trade_ms) / 1000 / 60
        if elapsed_min < cfg.min_interval_minutes:
            return _hold(
                f"min interval not met ({elapsed_min:.1f}m < {cfg.min_interval_minutes}m)",
                rationale,
            )

    action = str(proposal.action or "").strip().upper()
    if action not in VALID_ACTIONS:
        return _hold(f"unknown proposed action ({proposal.action})", rationale)

    if action == "HOLD":
        return Decision(
            action="HOLD",
            rationale=rationale,
            blocked_reason=None,
            buy_spend_wei=None,
            sell_amount=None,
            should_execute=False,
        )

    if action == "BUY":
        cap_wei = parse_ether(cfg.max_spend_eth_per_trade)
        if cap_wei <= 0:
            return _hold("cap not positive (MAX_SPEND_ETH_PER_TRADE)", rationale)
        spend_wei = min(max(0, int(ctx.eth_wei)), cap_wei)
        if spend_wei <= 0:
            return _hold("insufficient ETH", rationale)
        return Decision(
            action="BUY",
            rationale=rationale,
            blocked_reason=None,
            buy_spend_wei=spend_wei,
            sell_amount=None,
            should_execute=True,
        )

    bps = min(BPS_DENOMINATOR, max(0, int(cfg.sell_fraction_bps)))
    sell_amount = max(0, int(ctx.token_amount)) * bps // BPS_DENOMINATOR
    if sell_amount <= 0:
        return _hold("no token to sell (or fraction too small)", rationale)
    return Decision(
        action="SELL",
        rationale=rationale,
        blocked_reason=None,
        buy_spend_wei=None,
        sell_amount=sell_amount,
        should_execute=True,
    )


def record_executed_trade(state: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    updated = copy.deepcopy(state)
    reset_daily_if_needed(updated, now)
    updated["trades_executed_today"] = int(updated.get("trades_executed_today", 0) or 0) + 1
    updated["last_executed_trade_at_ms"] = to_ms(now)
    return updated
