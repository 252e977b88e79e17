from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from .state import default_channel_state


FAILURE_THRESHOLD = 3
BREAKER_COOLDOWN_MS = 30 * 60_000
RATE_LIMIT_MIN_MS = 60_000
RATE_LIMIT_MAX_MS = 180 * 60_000
RATE_LIMIT_DEFAULT_MS = 15 * 60_000

RECEIPT_BUCKET = "receipt"
OTHER_BUCKET = "other"


def bucket_for_kind(kind: str) -> str:
    return RECEIPT_BUCKET if str(kind or "").strip().lower() == "receipt" else OTHER_BUCKET


def channel_state(state: Dict[str, Any], channel: str) -> Dict[str, Any]:
    channels = state.get("channels")
    if not isinstance(channels, dict):
        channels = {}
        state["channels"] = channels
    record = channels.get(channel)
    if not isinstance(record, dict):
        record = default_channel_state()
        channels[channel] = record
    if not isinstance(record.get("last_posted_fingerprints"), dict):
        record["last_posted_fingerprints"] = {}
    return record


def disabled_until_ms(state: Dict[str, Any], channel: str) -> Optional[int]:
    until = channel_state(state, channel).get("circuit_breaker_disabled_until_ms")
    return int(until) if isinstance(until, (int, float)) else None


def is_circuit_open(state: Dict[str, Any], channel: str, now_ms: int) -> bool:
    until = disabled_until_ms(state, channel)
    return until is not None and now_ms < until


def _extend_disabled_until(record: Dict[str, Any], candidate_ms: int) -> None:
    current = record.get("circuit_breaker_disabled_until_ms")
    if isinstance(current, (int, float)) and current >= candidate_ms:
        return
    record["circuit_breaker_disabled_until_ms"] = int(candidate_ms)


def clamp_retry_after_ms(retry_after_ms: Optional[int]) -> int:
    if not isinstance(retry_after_ms, (int, float)) or retry_after_ms <= 0:
        return RATE_LIMIT_DEFAULT_MS
    return int(min(RATE_LIMIT_MAX_MS, max(RATE_LIMIT_MIN_MS, retry_after_ms)))


def record_failure(state: Dict[str, Any], channel: str, now_ms: int) -> int:
    record = channel_state(state, channel)
    count = int(record.get("failure_count", 0) or 0) + 1
    record["failure_count"] = count
    if count >= FAILURE_THRESHOLD:
        _extend_disabled_until(record, now_ms + BREAKER_COOLDOWN_MS)
    return count


def record_rate_limited(state: Dict[str, Any], channel: str, now_ms: int, retry_after_ms: Optional[int]) -> int:
    # Rate limiting is a platform signal, not a failure; failure_count stays put.
    record = channel_state(state, channel)
    _extend_disabled_until(record, now_ms + clamp_retry_after_ms(retry_after_ms))
    return int(record["circuit_breaker_disabled_until_ms"])


def record_success(state: Dict[str, Any], channel: str, now_ms: int, fingerprint: str, bucket: str) -> None:
    record = channel_state(state, channel)
    record["failure_count"] = 0
    record["circuit_breaker_disabled_until_ms"] = None
    record["last_post_ms"] = int(now_ms)
    record["last_posted_fingerprints"][bucket] = fingerprint


def record_duplicate_rejected(state: Dict[str, Any], channel: str, fingerprint: str, bucket: str) -> None:
    record = channel_state(state, channel)
    record["failure_count"] = 0
    record["circuit_breaker_disabled_until_ms"] = None
    record["last_posted_fingerprints"][bucket] = fingerprint


def gate_status(
    state: Dict[str, Any],
    channel: str,
    now_ms: int,
    min_interval_minutes: int,
    fingerprint: str,
    bucket: str,
) -> Tuple[bool, str]:
    if is_circuit_open(state, channel, now_ms):
        return False, "circuit_breaker"
    record = channel_state(state, channel)
    # Identical text is reported as a duplicate even inside the spacing window.
    if record["last_posted_fingerprints"].get(bucket) == fingerprint:
        return False, "duplicate"
    last_post_ms = record.get("last_post_ms")
    if isinstance(last_post_ms, (int, float)) and min_interval_minutes > 0:
        if now_ms - last_post_ms < min_interval_minutes * 60_000:
            return False, "min_interval"
    return True, "ok"
