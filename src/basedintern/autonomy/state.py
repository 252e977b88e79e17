import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol


SOCIAL_CHANNELS = ("x_api", "moltbook", "x_mentions")
NEWS_FINGERPRINT_LIMIT = 200
RECENT_POST_LIMIT = 50
MENTION_FINGERPRINT_LIMIT = 500
MOOD_INDEX_LIMIT = 20


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(when: datetime) -> int:
    return int(when.timestamp() * 1000)


def utc_day_key(when: Optional[datetime] = None) -> str:
    moment = when or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date().isoformat()


def default_channel_state() -> Dict[str, Any]:
    return {
        "failure_count": 0,
        "circuit_breaker_disabled_until_ms": None,
        "last_post_ms": None,
        "last_posted_fingerprints": {},
    }


def default_state(now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "day_key": utc_day_key(now),
        "trades_executed_today": 0,
        "last_executed_trade_at_ms": None,
        "channels": {channel: default_channel_state() for channel in SOCIAL_CHANNELS},
        "seen_news_fingerprints": [],
        "recent_social_post_fingerprints": [],
        "recent_social_post_texts": [],
        "recent_mood_indices": [],
        "last_seen_nonce": None,
        "last_seen_eth_wei": None,
        "last_seen_token_raw": None,
        "last_seen_block_number": None,
        "last_seen_mention_id": None,
        "replied_mention_fingerprints": [],
        "last_successful_mention_poll_ms": None,
        "last_post_day_utc": None,
        "news_day_key": None,
        "news_posts_today": 0,
        "news_last_post_ms": None,
    }


def _merge_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    merged = default_state()
    merged.update(state)
    # Day key of a fresh default must not overwrite a persisted one.
    if isinstance(state.get("day_key"), str):
        merged["day_key"] = state["day_key"]
    channels = state.get("channels")
    if not isinstance(channels, dict):
        channels = {}
    for channel in SOCIAL_CHANNELS:
        record = channels.get(channel)
        base = default_channel_state()
        if isinstance(record, dict):
            base.update(record)
        if not isinstance(base.get("last_posted_fingerprints"), dict):
            base["last_posted_fingerprints"] = {}
        channels[channel] = base
    merged["channels"] = channels
    for key in (
        "seen_news_fingerprints",
        "recent_social_post_fingerprints",
        "recent_social_post_texts",
        "recent_mood_indices",
        "replied_mention_fingerprints",
    ):
        if not isinstance(merged.get(key), list):
            merged[key] = []
    return merged


def load_state(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return default_state()
    with path.open("r", encoding="utf-8") as f:
        state = json.load(f)
    if not isinstance(state, dict):
        raise ValueError(f"State file {path} does not contain a JSON object")
    return _merge_defaults(state)


def save_state(path: Path, state: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class StateStore(Protocol):
    def load(self) -> Dict[str, Any]:
        ...

    def save(self, state: Dict[str, Any]) -> None:
        ...


class JsonStateStore:
    """Load/save pair for the agent state backed by a JSON file.

    Writes go through a temp file and ``os.replace`` so a reader never sees a
    partially written state. Errors are not caught here; losing track of state
    risks duplicate trades and posts, so the caller decides what to do.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Dict[str, Any]:
        return load_state(self.path)

    def save(self, state: Dict[str, Any]) -> None:
        save_state(self.path, state)


def reset_daily_if_needed(state: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    today = utc_day_key(now)
    current = state.get("day_key")
    # Only move forward; a stale clock reading never rewinds the counters.
    if isinstance(current, str) and current >= today:
        return False
    state["day_key"] = today
    state["trades_executed_today"] = 0
    return True


def remember_bounded(items: Any, value: Any, limit: int) -> List[Any]:
    """LRU insert: re-inserting moves the value to the newest (last) slot."""
    out = [item for item in (items if isinstance(items, list) else []) if item != value]
    out.append(value)
    if limit <= 0:
        return []
    return out[-limit:]


def remember_news_seen(state: Dict[str, Any], fingerprint: str) -> None:
    state["seen_news_fingerprints"] = remember_bounded(
        state.get("seen_news_fingerprints"), fingerprint, NEWS_FINGERPRINT_LIMIT
    )


def has_seen_news(state: Dict[str, Any], fingerprint: str) -> bool:
    seen = state.get("seen_news_fingerprints")
    return isinstance(seen, list) and fingerprint in seen
