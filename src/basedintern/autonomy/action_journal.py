from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .dedupe import normalize_str


logger = logging.getLogger("basedintern.autonomy")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clip_text(value: Any, limit: int) -> str:
    text = normalize_str(value).strip()
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()


def _sanitize_meta(meta: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(meta, dict):
        return None
    out: Dict[str, Any] = {}
    for raw_key, raw_value in meta.items():
        key = normalize_str(raw_key).strip()
        if not key or raw_value is None:
            continue
        if isinstance(raw_value, (bool, int, float)):
            # Wei amounts overflow JSON number precision in most readers.
            out[key] = str(raw_value) if isinstance(raw_value, int) and abs(raw_value) > 2**53 else raw_value
        elif isinstance(raw_value, dict):
            nested = _sanitize_meta(raw_value)
            if nested:
                out[key] = nested
        elif isinstance(raw_value, (list, tuple)):
            items = [_clip_text(item, 400) for item in list(raw_value)[:10]]
            items = [item for item in items if item]
            if items:
                out[key] = items
        else:
            clipped = _clip_text(raw_value, 400)
            if clipped:
                out[key] = clipped
    return out or None


def append_action_journal(
    path: Path,
    *,
    action_type: str,
    channel: str = "",
    content: str = "",
    reason: Optional[str] = None,
    tx_hash: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> bool:
    """Append one JSONL row. Returns False (and logs) instead of raising on I/O errors."""
    row: Dict[str, Any] = {
        "ts": _utc_now_iso(),
        "action_type": normalize_str(action_type).strip().lower(),
    }
    if channel:
        row["channel"] = normalize_str(channel).strip().lower()
    if content:
        row["content"] = _clip_text(content, 5000)
    if reason:
        row["reason"] = _clip_text(reason, 400)
    if tx_hash:
        row["tx_hash"] = normalize_str(tx_hash).strip()
    safe_meta = _sanitize_meta(meta)
    if safe_meta:
        row["meta"] = safe_meta
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=True) + "\n")
    except OSError as e:
        # The journal is an audit trail; it must never block a tick.
        logger.warning("Action journal write failed path=%s error=%s", path, e)
        return False
    return True
