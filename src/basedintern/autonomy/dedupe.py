from __future__ import annotations

import hashlib
import random
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .state import RECENT_POST_LIMIT, remember_bounded


_URL_RE = re.compile(r"https?://\S+")
_PUNCT_RE = re.compile(r"[.,!?;:'\"()\[\]{}]")
_SPACE_RE = re.compile(r"\s+")


def normalize_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def normalize_for_fingerprint(text: Any) -> str:
    blob = normalize_str(text).lower()
    blob = _URL_RE.sub("", blob)
    blob = _PUNCT_RE.sub(" ", blob)
    return _SPACE_RE.sub(" ", blob).strip()


def fingerprint_content(text: Any) -> str:
    normalized = normalize_for_fingerprint(text)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def calculate_similarity(text_a: Any, text_b: Any) -> float:
    """Jaccard overlap of the normalized word sets, 0.0 (disjoint) to 1.0."""
    norm_a = normalize_for_fingerprint(text_a)
    norm_b = normalize_for_fingerprint(text_b)
    if norm_a == norm_b:
        return 1.0
    words_a = set(norm_a.split())
    words_b = set(norm_b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def most_similar_recent(
    state: Dict[str, Any],
    candidate_text: str,
    lookback: int = 10,
) -> Tuple[float, Optional[str]]:
    recent = state.get("recent_social_post_texts")
    if not isinstance(recent, list) or lookback <= 0:
        return 0.0, None
    best_score = 0.0
    best_text: Optional[str] = None
    for text in recent[-lookback:]:
        score = calculate_similarity(candidate_text, text)
        if best_text is None or score > best_score:
            best_score = score
            best_text = normalize_str(text)
    return best_score, best_text


def is_content_too_similar(
    state: Dict[str, Any],
    candidate_text: str,
    threshold: float,
    lookback: int = 10,
) -> bool:
    score, match = most_similar_recent(state, candidate_text, lookback=lookback)
    return match is not None and score >= threshold


def remember_social_post(state: Dict[str, Any], text: str, limit: int = RECENT_POST_LIMIT) -> None:
    fingerprint = fingerprint_content(text)
    state["recent_social_post_fingerprints"] = remember_bounded(
        state.get("recent_social_post_fingerprints"), fingerprint, limit
    )
    state["recent_social_post_texts"] = remember_bounded(state.get("recent_social_post_texts"), text, limit)


def pick_non_recent_index(
    template_count: int,
    recent_indices: Sequence[int],
    lookback: int = 3,
    rng: Optional[random.Random] = None,
) -> int:
    if template_count <= 0:
        raise ValueError("template_count must be positive")
    chooser = rng or random
    window = list(recent_indices)[-lookback:] if lookback > 0 else []
    available = [idx for idx in range(template_count) if idx not in window]
    if available:
        return available[chooser.randrange(len(available))]

    # Every template is recent: take the one whose latest use is oldest.
    history = list(recent_indices)
    last_used: Dict[int, int] = {}
    for position, idx in enumerate(history):
        last_used[idx] = position
    candidates: List[Tuple[int, int]] = [(last_used.get(idx, -1), idx) for idx in range(template_count)]
    candidates.sort()
    return candidates[0][1]
