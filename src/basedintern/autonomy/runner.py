from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..rpc_client import JsonRpcChainReader
from ..x_client import XClient, XCredentials

from .action_journal import append_action_journal
from .brain import BrainContext, propose_action
from .config import Config, load_config
from .guardrails import Decision, DecisionContext, ProposedAction, enforce_guardrails, record_executed_trade
from .logging_utils import setup_logging
from .mentions import MentionPoller
from .news import NewsAggregator, NewsStepResult, build_news_aggregator, run_news_step
from .poster import MultiChannelPoster, PostResult, build_poster
from .receipts import ReceiptInput, build_receipt_message
from .state import JsonStateStore, StateStore, reset_daily_if_needed, utc_now
from .trade import TradeExecutor, UnconfiguredTradeExecutor, execute_decision
from .watch import (
    ActivityResult,
    ActivitySnapshot,
    ChainReader,
    apply_snapshot,
    parse_min_eth_delta,
    parse_min_token_delta,
    watch_for_activity,
)


logger = logging.getLogger("basedintern.autonomy")


class TickGuard:
    """Refuses to start a tick while another one is in flight."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


@dataclass
class TickDeps:
    cfg: Config
    store: StateStore
    reader: Optional[ChainReader]
    executor: TradeExecutor
    poster: MultiChannelPoster
    news: Optional[NewsAggregator] = None
    now_fn: Callable[[], datetime] = utc_now


@dataclass
class TickReport:
    ran: bool
    reason: str
    activity: Optional[ActivityResult] = None
    proposal: Optional[ProposedAction] = None
    decision: Optional[Decision] = None
    tx_hash: Optional[str] = None
    receipt: Optional[str] = None
    post_results: List[PostResult] = field(default_factory=list)
    news: Optional[NewsStepResult] = None


def _journal(cfg: Config, **kwargs: Any) -> None:
    if cfg.journal_path:
        append_action_journal(cfg.journal_path, **kwargs)


def _news_step(deps: TickDeps, state: Dict[str, Any], now: datetime) -> Optional[NewsStepResult]:
    if deps.news is None or not deps.cfg.news_enabled:
        return None
    result = run_news_step(deps.cfg, state, deps.news, deps.poster, now, save_state=deps.store.save)
    for post in result.post_results:
        if post.posted:
            _journal(deps.cfg, action_type="news_post", channel=post.channel, content=result.item.url)
    return result


def _run_tick_locked(deps: TickDeps) -> TickReport:
    cfg = deps.cfg
    state = deps.store.load()
    now = deps.now_fn()
    if reset_daily_if_needed(state, now):
        logger.info("Daily counters reset day_key=%s", state["day_key"])

    if deps.reader is None or not cfg.wallet_address:
        logger.warning("Tick skipped reason=no_chain_reader wallet_configured=%s", bool(cfg.wallet_address))
        deps.store.save(state)
        return TickReport(ran=True, reason="no_chain_reader")

    activity = watch_for_activity(
        deps.reader,
        cfg.wallet_address,
        cfg.token_address,
        ActivitySnapshot.from_state(state),
        parse_min_eth_delta(cfg.min_eth_delta),
        parse_min_token_delta(cfg.min_token_delta, cfg.token_decimals),
    )
    apply_snapshot(state, activity)
    deps.store.save(state)

    if not activity.changed:
        logger.info("No activity detected; skipping receipt post")
        news = _news_step(deps, state, now)
        return TickReport(ran=True, reason="no_activity", activity=activity, news=news)
    logger.info("Activity detected reasons=%s", "; ".join(activity.reasons))

    # A failed read counts as zero here; the snapshot's previous value is for change detection only.
    eth_wei = activity.eth_wei_read if activity.eth_wei_read is not None else 0
    token_amount = activity.token_raw_read if activity.token_raw_read is not None else 0
    proposal = propose_action(
        cfg,
        BrainContext(
            wallet=cfg.wallet_address,
            eth_wei=eth_wei,
            token_amount=token_amount,
            token_decimals=cfg.token_decimals,
        ),
    )
    decision = enforce_guardrails(
        proposal,
        DecisionContext(cfg=cfg, state=state, now=now, eth_wei=eth_wei, token_amount=token_amount),
    )
    if decision.blocked_reason:
        logger.info("Guardrail blocked proposal=%s reason=%s", proposal.action, decision.blocked_reason)

    tx_hash: Optional[str] = None
    receipt_action = decision.action
    if decision.should_execute:
        try:
            tx_hash = execute_decision(decision, deps.executor)
        except Exception as e:
            logger.warning("Trade execution failed; reporting HOLD error=%s", e)
            receipt_action = "HOLD"
            _journal(cfg, action_type="trade_failed", reason=str(e), meta={"action": decision.action})
        else:
            state = record_executed_trade(state, now)
            deps.store.save(state)
            _journal(
                cfg,
                action_type="trade",
                tx_hash=tx_hash,
                meta={
                    "action": decision.action,
                    "buy_spend_wei": decision.buy_spend_wei,
                    "sell_amount": decision.sell_amount,
                },
            )

    receipt = build_receipt_message(
        ReceiptInput(
            action=receipt_action,
            wallet=cfg.wallet_address,
            eth_wei=eth_wei,
            token_amount=token_amount,
            token_decimals=cfg.token_decimals,
            tx_hash=tx_hash,
            dry_run=cfg.dry_run,
        ),
        state,
        now=now,
    )
    results = deps.poster.post(state, receipt, "receipt", now)
    for result in results:
        if result.posted:
            _journal(cfg, action_type="post", channel=result.channel, content=receipt)
    deps.store.save(state)
    news = _news_step(deps, state, now)

    return TickReport(
        ran=True,
        reason="ok",
        activity=activity,
        proposal=proposal,
        decision=decision,
        tx_hash=tx_hash,
        receipt=receipt,
        post_results=results,
        news=news,
    )


def run_tick(deps: TickDeps, guard: Optional[TickGuard] = None) -> TickReport:
    """Watcher, brain, guardrails, optional trade, then posting, in that order.

    With a ``guard`` a concurrent caller gets ``reason="tick_in_progress"``
    instead of a second tick racing on the same state.
    """
    if guard is not None and not guard.try_acquire():
        logger.info("Tick skipped reason=tick_in_progress")
        return TickReport(ran=False, reason="tick_in_progress")
    try:
        return _run_tick_locked(deps)
    finally:
        if guard is not None:
            guard.release()


def build_tick_deps(cfg: Config) -> TickDeps:
    store = JsonStateStore(cfg.state_path)
    reader = JsonRpcChainReader(cfg.rpc_url) if cfg.rpc_url else None
    return TickDeps(
        cfg=cfg,
        store=store,
        reader=reader,
        executor=UnconfiguredTradeExecutor(cfg.router_type),
        poster=build_poster(cfg, save_state=store.save),
        news=build_news_aggregator(cfg) if cfg.news_enabled else None,
    )


def build_mention_poller(cfg: Config, store: StateStore) -> Optional[MentionPoller]:
    if not cfg.x_mentions_enabled:
        return None
    if not cfg.x_api_configured:
        logger.warning("X_MENTIONS_ENABLED=true but X API credentials are missing; mentions disabled")
        return None
    return MentionPoller(XClient(XCredentials.from_config(cfg)), cfg, save_state=store.save)


def run_loop(cfg: Optional[Config] = None, max_iterations: Optional[int] = None) -> None:
    cfg = cfg or load_config()
    setup_logging(cfg)
    deps = build_tick_deps(cfg)
    poller = build_mention_poller(cfg, deps.store)
    guard = TickGuard()

    logger.info(
        (
            "Agent loop starting trading_enabled=%s kill_switch=%s dry_run=%s social_mode=%s "
            "social_targets=%s social_dry_run=%s loop_minutes=%s mentions=%s state_path=%s"
        ),
        cfg.trading_enabled,
        cfg.kill_switch,
        cfg.dry_run,
        cfg.social_mode,
        ",".join(cfg.social_targets) or "-",
        cfg.social_dry_run,
        cfg.loop_minutes,
        poller is not None,
        cfg.state_path,
    )

    tick_every = cfg.loop_minutes * 60
    poll_every = cfg.x_poll_minutes * 60
    next_tick = time.monotonic()
    next_poll = time.monotonic()
    iteration = 0
    while max_iterations is None or iteration < max_iterations:
        iteration += 1
        now_mono = time.monotonic()
        try:
            if now_mono >= next_tick:
                next_tick = now_mono + tick_every
                report = run_tick(deps, guard)
                logger.info("Tick done iteration=%s reason=%s", iteration, report.reason)
            if poller is not None and now_mono >= next_poll:
                next_poll = now_mono + poll_every
                state = deps.store.load()
                poll = poller.poll(state, deps.now_fn())
                logger.info(
                    "Mentions poll fetched=%s replied=%s reason=%s", poll.fetched, poll.replied, poll.reason
                )
        except Exception as e:
            # State store failures land here; the next iteration starts from a fresh load.
            logger.exception("Loop iteration=%s error=%s", iteration, e)

        wake_at = min(next_tick, next_poll) if poller is not None else next_tick
        sleep_seconds = max(1, int(wake_at - time.monotonic()))
        if max_iterations is not None and iteration >= max_iterations:
            break
        logger.info("Sleeping seconds=%s reason=%s", sleep_seconds, "next_tick" if wake_at == next_tick else "mentions")
        time.sleep(sleep_seconds)


if __name__ == "__main__":
    run_loop()
