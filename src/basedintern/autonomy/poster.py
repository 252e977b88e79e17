"""Posting orchestrator.

``post_to_channel`` is the only path by which the agent speaks on a social
channel. Each attempt is gated by the channel's circuit breaker, the
idempotency fingerprint for the content bucket, the minimum spacing between
posts, and (for anything that is not a receipt) similarity against recently
posted text. Transport outcomes are folded back into the channel record; the
function never raises for transport trouble, only for a failing ``save_state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..moltbook_client import MoltbookClient, MoltbookCredentials
from ..x_client import XClient, XCredentials

from .circuit_breaker import (
    bucket_for_kind,
    channel_state,
    gate_status,
    record_duplicate_rejected,
    record_failure,
    record_rate_limited,
    record_success,
)
from .config import Config
from .dedupe import fingerprint_content, is_content_too_similar, most_similar_recent, remember_social_post
from .state import to_ms, utc_day_key
from .transports import LogOnlyTransport, MoltbookTransport, SocialTransport, TransportResult, XApiTransport


logger = logging.getLogger("basedintern.autonomy")

SaveStateFn = Callable[[Dict[str, Any]], None]


@dataclass
class PostResult:
    posted: bool
    reason: str
    channel: str
    fingerprint: str


def _persist(save_state: Optional[SaveStateFn], state: Dict[str, Any]) -> None:
    if save_state is not None:
        save_state(state)


def post_to_channel(
    state: Dict[str, Any],
    channel: str,
    text: str,
    kind: str,
    transport: SocialTransport,
    cfg: Config,
    now: datetime,
    save_state: Optional[SaveStateFn] = None,
) -> PostResult:
    bucket = bucket_for_kind(kind)
    fingerprint = fingerprint_content(text)
    now_ms = to_ms(now)

    if cfg.social_dry_run:
        logger.info(
            "Social dry run channel=%s kind=%s fingerprint=%s text=%s",
            channel,
            kind,
            fingerprint[:12],
            text.replace("\n", " | "),
        )
        return PostResult(False, "dry_run", channel, fingerprint)

    allowed, reason = gate_status(
        state,
        channel,
        now_ms,
        cfg.post_min_interval_minutes,
        fingerprint,
        bucket,
    )
    if not allowed:
        logger.info("Post skipped channel=%s kind=%s reason=%s", channel, kind, reason)
        return PostResult(False, reason, channel, fingerprint)

    if bucket != "receipt" and is_content_too_similar(state, text, cfg.similarity_threshold):
        score, match = most_similar_recent(state, text)
        logger.info(
            "Post skipped channel=%s kind=%s reason=too_similar score=%.2f match=%s",
            channel,
            kind,
            score,
            (match or "")[:80],
        )
        return PostResult(False, "too_similar", channel, fingerprint)

    logger.info("action=post attempt channel=%s kind=%s fingerprint=%s", channel, kind, fingerprint[:12])
    try:
        outcome = transport.post(text)
    except Exception as e:
        # Transports are expected to return results; anything escaping counts as a failure.
        logger.warning("Transport raised channel=%s error=%s", channel, e)
        outcome = TransportResult(success=False, detail=str(e))

    if outcome.success:
        record_success(state, channel, now_ms, fingerprint, bucket)
        remember_social_post(state, text)
        state["last_post_day_utc"] = utc_day_key(now)
        _persist(save_state, state)
        logger.info("ACTION SUCCESS channel=%s kind=%s detail=%s", channel, kind, outcome.detail)
        return PostResult(True, "posted", channel, fingerprint)

    if outcome.duplicate_rejected:
        record_duplicate_rejected(state, channel, fingerprint, bucket)
        _persist(save_state, state)
        logger.info("Platform rejected duplicate channel=%s kind=%s detail=%s", channel, kind, outcome.detail)
        return PostResult(False, "duplicate_rejected", channel, fingerprint)

    if outcome.rate_limited:
        until_ms = record_rate_limited(state, channel, now_ms, outcome.retry_after_ms)
        _persist(save_state, state)
        logger.warning(
            "Rate limited channel=%s retry_after_ms=%s disabled_until_ms=%s",
            channel,
            outcome.retry_after_ms,
            until_ms,
        )
        return PostResult(False, "rate_limited", channel, fingerprint)

    failures = record_failure(state, channel, now_ms)
    _persist(save_state, state)
    record = channel_state(state, channel)
    logger.warning(
        "Post failed channel=%s failure_count=%s disabled_until_ms=%s detail=%s",
        channel,
        failures,
        record.get("circuit_breaker_disabled_until_ms"),
        outcome.detail,
    )
    return PostResult(False, "error", channel, fingerprint)


class MultiChannelPoster:
    """Posts the same text to each configured channel, one after another."""

    def __init__(
        self,
        channels: Sequence[Tuple[str, SocialTransport]],
        cfg: Config,
        save_state: Optional[SaveStateFn] = None,
    ):
        self.channels = list(channels)
        self.cfg = cfg
        self.save_state = save_state

    def post(self, state: Dict[str, Any], text: str, kind: str, now: datetime) -> List[PostResult]:
        results: List[PostResult] = []
        for name, transport in self.channels:
            results.append(post_to_channel(state, name, text, kind, transport, self.cfg, now, self.save_state))
        return results


def _transport_for(channel: str, cfg: Config) -> SocialTransport:
    if channel == "x_api":
        return XApiTransport(XClient(XCredentials.from_config(cfg)))
    if channel == "moltbook":
        client = MoltbookClient(MoltbookCredentials.load(cfg.moltbook_api_key))
        return MoltbookTransport(client, submolt=cfg.moltbook_submolt)
    raise ValueError(f"Unsupported social channel: {channel}")


def build_poster(
    cfg: Config,
    save_state: Optional[SaveStateFn] = None,
    transport_factory: Callable[[str, Config], SocialTransport] = _transport_for,
) -> MultiChannelPoster:
    """Map SOCIAL_MODE to a poster.

    ``none`` gets a single log-only channel so the tick still exercises the
    gating and bookkeeping. ``multi`` with no valid targets posts nowhere.
    """
    if cfg.social_mode == "none":
        return MultiChannelPoster([("none", LogOnlyTransport())], cfg, save_state)
    channels = [(name, transport_factory(name, cfg)) for name in cfg.social_targets]
    if not channels:
        logger.warning("SOCIAL_MODE=%s has no usable targets; posting disabled", cfg.social_mode)
    return MultiChannelPoster(channels, cfg, save_state)
