"""X mentions poller.

Replies to mentions with intent-only acknowledgements: a "buy" or "sell"
mention is noted, never executed. Replies share the ``x_mentions`` channel
breaker, so failures here cannot silence receipts on ``x_api`` and vice versa.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..social_errors import DuplicateContentError, RateLimitedError
from .circuit_breaker import channel_state, is_circuit_open, record_failure, record_rate_limited
from .config import Config
from .state import MENTION_FINGERPRINT_LIMIT, remember_bounded, to_ms


logger = logging.getLogger("basedintern.autonomy")

MENTIONS_CHANNEL = "x_mentions"
MAX_REPLIES_PER_POLL = 3
MAX_MENTION_AGE_MS = 24 * 60 * 60 * 1000
REPLY_MAX_CHARS = 240
REPLY_ATTEMPTS = 3

SaveStateFn = Callable[[Dict[str, Any]], None]


class MentionsClient(Protocol):
    def get_me_id(self) -> str:
        ...

    def get_mentions(self, user_id: str, since_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    def post_tweet(self, text: str, reply_to: Optional[str] = None) -> Dict[str, Any]:
        ...


@dataclass
class MentionPollResult:
    fetched: int = 0
    replied: int = 0
    skipped: int = 0
    reason: str = "ok"


def parse_command(text: str) -> str:
    # Most specific first so "why not buy" is a why.
    lower = (text or "").lower().strip()
    if "why" in lower:
        return "why"
    if "buy" in lower:
        return "buy"
    if "sell" in lower:
        return "sell"
    if "status" in lower or "bal" in lower:
        return "status"
    if "help" in lower or "?" in lower:
        return "help"
    return "unknown"


def mention_fingerprint(mention_id: str, command: str) -> str:
    return hashlib.sha256(f"{mention_id}|{command}".encode("utf-8")).hexdigest()


def truncate_reply(text: str) -> str:
    if len(text) <= REPLY_MAX_CHARS:
        return text
    return text[: REPLY_MAX_CHARS - 1].rstrip() + "…"


def compose_reply(command: str, cfg: Config, username: Optional[str] = None) -> str:
    mode = "DRY_RUN" if cfg.dry_run else "LIVE"
    trading = "enabled" if cfg.trading_enabled and not cfg.kill_switch else "disabled"
    base = "based intern here."
    if command == "help":
        body = (
            f"{base} commands: status (check balances), buy/sell (intent noted, no execution), "
            f"why (explain guardrails), help (this). mode: {mode}"
        )
    elif command == "status":
        body = f"{base} trading: {trading} | mode: {mode}"
    elif command in {"buy", "sell"}:
        body = f"{base} {command} intent noted. replies never execute trades. status: trading {trading} | {mode}"
    elif command == "why":
        body = (
            f"{base} guardrails: TRADING_ENABLED={str(cfg.trading_enabled).lower()}, "
            f"KILL_SWITCH={str(cfg.kill_switch).lower()}, DRY_RUN={str(cfg.dry_run).lower()}. all must pass."
        )
    else:
        body = f"{base} didn't recognize that. try: status, buy, sell, why, or help. mode: {mode}"
    if username:
        body = f"@{username.strip()} {body}"
    return truncate_reply(body)


def _reply_text(reply: str, mention_id: str) -> str:
    # X rejects identical text even across threads; a short ref keeps replies distinct.
    return truncate_reply(f"{reply} ref:{mention_id[-6:]}")


def _record_success(state: Dict[str, Any], now_ms: int) -> None:
    record = channel_state(state, MENTIONS_CHANNEL)
    record["failure_count"] = 0
    record["circuit_breaker_disabled_until_ms"] = None
    record["last_post_ms"] = now_ms


class MentionPoller:
    def __init__(
        self,
        client: MentionsClient,
        cfg: Config,
        save_state: Optional[SaveStateFn] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.cfg = cfg
        self.save_state = save_state
        self._sleep = sleep
        self.user_id: Optional[str] = None

    def _persist(self, state: Dict[str, Any]) -> None:
        if self.save_state is not None:
            self.save_state(state)

    def _eligible(self, mentions: List[Dict[str, Any]], now_ms: int) -> List[Dict[str, Any]]:
        out = []
        for mention in mentions:
            if mention.get("author_id") and mention.get("author_id") == self.user_id:
                continue
            created = mention.get("created_at_ms")
            if isinstance(created, (int, float)) and now_ms - created > MAX_MENTION_AGE_MS:
                continue
            out.append(mention)
        return out

    def _post_reply(self, state: Dict[str, Any], mention_id: str, text: str, now_ms: int) -> bool:
        for attempt in range(1, REPLY_ATTEMPTS + 1):
            try:
                self.client.post_tweet(_reply_text(text, mention_id), reply_to=mention_id)
            except DuplicateContentError:
                logger.info("x_mentions reply already posted mention_id=%s", mention_id)
                _record_success(state, now_ms)
                return True
            except RateLimitedError:
                raise
            except Exception as e:
                logger.warning("x_mentions reply attempt failed attempt=%s error=%s", attempt, e)
                if attempt == REPLY_ATTEMPTS:
                    record_failure(state, MENTIONS_CHANNEL, now_ms)
                    self._persist(state)
                    return False
                self._sleep(float(attempt))
                continue
            _record_success(state, now_ms)
            return True
        return False

    def poll(self, state: Dict[str, Any], now: datetime) -> MentionPollResult:
        now_ms = to_ms(now)
        result = MentionPollResult()
        if is_circuit_open(state, MENTIONS_CHANNEL, now_ms):
            logger.warning("x_mentions skipped reason=circuit_breaker")
            result.reason = "circuit_breaker"
            return result

        try:
            if self.user_id is None:
                self.user_id = self.client.get_me_id()
            mentions = self.client.get_mentions(self.user_id, since_id=state.get("last_seen_mention_id"))
        except RateLimitedError as e:
            record_rate_limited(state, MENTIONS_CHANNEL, now_ms, e.retry_after_ms)
            self._persist(state)
            result.reason = "rate_limited"
            return result
        except Exception as e:
            logger.warning("x_mentions fetch failed error=%s", e)
            record_failure(state, MENTIONS_CHANNEL, now_ms)
            self._persist(state)
            result.reason = "error"
            return result

        result.fetched = len(mentions)
        state["last_successful_mention_poll_ms"] = now_ms
        if not mentions:
            self._persist(state)
            return result

        replied = list(state.get("replied_mention_fingerprints") or [])
        try:
            for mention in self._eligible(mentions, now_ms):
                if result.replied >= MAX_REPLIES_PER_POLL:
                    logger.info("x_mentions reached per-poll reply cap cap=%s", MAX_REPLIES_PER_POLL)
                    break
                command = parse_command(mention.get("text", ""))
                fingerprint = mention_fingerprint(mention["id"], command)
                if fingerprint in replied:
                    result.skipped += 1
                    continue
                reply = compose_reply(command, self.cfg, mention.get("author_username"))
                if self._post_reply(state, mention["id"], reply, now_ms):
                    replied = remember_bounded(replied, fingerprint, MENTION_FINGERPRINT_LIMIT)
                    state["replied_mention_fingerprints"] = replied
                    result.replied += 1
                    logger.info("x_mentions replied mention_id=%s command=%s", mention["id"], command)
                    self._persist(state)
                else:
                    result.skipped += 1
        except RateLimitedError as e:
            # Keep last_seen_mention_id so unanswered mentions are fetched again.
            record_rate_limited(state, MENTIONS_CHANNEL, now_ms, e.retry_after_ms)
            self._persist(state)
            result.reason = "rate_limited"
            return result

        # Mentions come newest first; advancing past them stops re-fetching.
        state["last_seen_mention_id"] = mentions[0]["id"]
        self._persist(state)
        return result
