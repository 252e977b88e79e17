from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from .guardrails import parse_ether, parse_units


logger = logging.getLogger("basedintern.autonomy")

DEFAULT_MIN_ETH_DELTA = "0.00001"
DEFAULT_MIN_TOKEN_DELTA_WHOLE = 1000

T = TypeVar("T")


class ChainReader(Protocol):
    def get_nonce(self, address: str) -> int:
        ...

    def get_balance(self, address: str) -> int:
        ...

    def get_token_balance(self, token: str, address: str) -> int:
        ...

    def get_block_number(self) -> int:
        ...


@dataclass
class ActivitySnapshot:
    nonce: Optional[int] = None
    eth_wei: Optional[int] = None
    token_raw: Optional[int] = None
    block_number: Optional[int] = None

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "ActivitySnapshot":
        return cls(
            nonce=_opt_int(state.get("last_seen_nonce")),
            eth_wei=_opt_int(state.get("last_seen_eth_wei")),
            token_raw=_opt_int(state.get("last_seen_token_raw")),
            block_number=_opt_int(state.get("last_seen_block_number")),
        )


@dataclass
class ActivityResult:
    changed: bool
    reasons: List[str] = field(default_factory=list)
    nonce_changed: bool = False
    eth_changed: bool = False
    token_changed: bool = False
    eth_delta: Optional[int] = None
    token_delta: Optional[int] = None
    snapshot: ActivitySnapshot = field(default_factory=ActivitySnapshot)
    # This tick's reads; None where the read failed.
    eth_wei_read: Optional[int] = None
    token_raw_read: Optional[int] = None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _read(what: str, fn: Callable[[], T]) -> Optional[T]:
    try:
        return fn()
    except Exception as e:
        # Chain reads are best effort; an unknown value just means no change this tick.
        logger.warning("Chain read failed field=%s error=%s", what, e)
        return None


def parse_min_eth_delta(text: Any) -> int:
    wei = parse_ether(text)
    return wei if wei > 0 else parse_ether(DEFAULT_MIN_ETH_DELTA)


def parse_min_token_delta(text: Any, decimals: int) -> int:
    raw = parse_units(text, decimals)
    return raw if raw > 0 else DEFAULT_MIN_TOKEN_DELTA_WHOLE * (10 ** max(0, int(decimals)))


def watch_for_activity(
    reader: ChainReader,
    wallet: str,
    token: Optional[str],
    snapshot: ActivitySnapshot,
    min_eth_delta_wei: int,
    min_token_delta_raw: int,
) -> ActivityResult:
    """Compare fresh chain reads against the last snapshot.

    The returned snapshot always carries the newest known values; a field whose
    read failed keeps its previous value so the next tick compares against the
    last good reading. ``eth_wei_read`` and ``token_raw_read`` carry only what
    was read this tick, for callers that must not act on stale balances.
    """
    result = ActivityResult(changed=False)

    nonce = _read("nonce", lambda: int(reader.get_nonce(wallet)))
    eth_wei = _read("eth_balance", lambda: int(reader.get_balance(wallet)))
    token_raw: Optional[int] = None
    if token:
        token_raw = _read("token_balance", lambda: int(reader.get_token_balance(token, wallet)))
    block_number = _read("block_number", lambda: int(reader.get_block_number()))

    if nonce is not None and snapshot.nonce is not None and nonce != snapshot.nonce:
        result.nonce_changed = True
        result.reasons.append(f"nonce changed: {snapshot.nonce} -> {nonce}")

    if eth_wei is not None and snapshot.eth_wei is not None:
        delta = abs(eth_wei - snapshot.eth_wei)
        if delta >= min_eth_delta_wei:
            result.eth_changed = True
            result.eth_delta = delta
            result.reasons.append(f"ETH balance changed by {delta} wei")

    if token_raw is not None and snapshot.token_raw is not None:
        delta = abs(token_raw - snapshot.token_raw)
        if delta >= min_token_delta_raw:
            result.token_changed = True
            result.token_delta = delta
            result.reasons.append(f"token balance changed by {delta} raw")

    result.changed = result.nonce_changed or result.eth_changed or result.token_changed
    result.eth_wei_read = eth_wei
    result.token_raw_read = token_raw
    result.snapshot = ActivitySnapshot(
        nonce=nonce if nonce is not None else snapshot.nonce,
        eth_wei=eth_wei if eth_wei is not None else snapshot.eth_wei,
        token_raw=token_raw if token_raw is not None else snapshot.token_raw,
        block_number=block_number if block_number is not None else snapshot.block_number,
    )
    return result


def apply_snapshot(state: Dict[str, Any], result: ActivityResult) -> None:
    snap = result.snapshot
    state["last_seen_nonce"] = snap.nonce
    # Balances go to JSON as strings so large integers survive other readers.
    state["last_seen_eth_wei"] = str(snap.eth_wei) if snap.eth_wei is not None else None
    state["last_seen_token_raw"] = str(snap.token_raw) if snap.token_raw is not None else None
    state["last_seen_block_number"] = snap.block_number
