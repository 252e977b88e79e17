"""News step of the tick.

Fetch items from the configured sources, drop anything whose fingerprint is
already in ``seen_news_fingerprints``, pick the best remaining item, and post
it through the same gated poster as receipts (kind ``news``). An item is only
remembered as seen once a channel actually accepted it, so a blocked or failed
post is retried on a later tick and a posted one is never repeated, including
across restarts.
"""

from __future__ import annotations

import hashlib
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from .config import Config
from .poster import MultiChannelPoster, PostResult
from .state import has_seen_news, remember_news_seen, to_ms, utc_day_key


logger = logging.getLogger("basedintern.autonomy")

NEWS_TIMEOUT_SECONDS = 15
NEWS_POST_MAX_CHARS = 240
RSS_ITEMS_PER_FEED = 5
GITHUB_RELEASES_PER_REPO = 3
RECENCY_HALF_LIFE_HOURS = 24
GITHUB_API_BASE = "https://api.github.com"
CRYPTOPANIC_URL = "https://cryptopanic.com/api/v1/posts/"
ATOM_NS = "{http://www.w3.org/2005/Atom}"

# Reasons a channel gives when the text is already out there.
_ALREADY_POSTED = {"duplicate", "duplicate_rejected"}

_KEYWORD_BOOSTS = (
    (("release", "releases"), 0.18),
    (("upgrade", "hardfork"), 0.18),
    (("security", "vuln"), 0.22),
    (("exploit", "hack"), 0.25),
    (("base",), 0.15),
)


@dataclass
class NewsItem:
    source: str
    title: str
    url: str
    published_at_ms: Optional[int] = None
    item_id: str = ""

    @property
    def fingerprint(self) -> str:
        return self.item_id or news_fingerprint(self.source, self.title, self.url)


class NewsSource(Protocol):
    name: str

    def fetch(self) -> List[NewsItem]:
        ...


def canonicalize_url(url: str) -> str:
    """Lowercase scheme and host, drop fragments, tracking params and a trailing slash."""
    parts = urlsplit(url.strip())
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not k.lower().startswith("utm_")]
    path = parts.path.rstrip("/") or ""
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, urlencode(query), ""))


def news_fingerprint(source: str, title: str, url: str) -> str:
    key = f"{source}|{' '.join(title.lower().split())}|{canonicalize_url(url)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _parse_time_ms(raw: Any) -> Optional[int]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    try:
        return to_ms(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return to_ms(parsedate_to_datetime(text))
    except (TypeError, ValueError):
        return None


def _get(url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> requests.Response:
    resp = requests.get(url, params=params, headers=headers, timeout=NEWS_TIMEOUT_SECONDS)
    if resp.status_code >= 400:
        raise RuntimeError(f"HTTP {resp.status_code} from {url}")
    return resp


class GitHubReleasesSource:
    def __init__(self, repo: str):
        self.repo = repo.strip().strip("/")
        self.name = f"github:{self.repo}"

    def fetch(self) -> List[NewsItem]:
        resp = _get(
            f"{GITHUB_API_BASE}/repos/{self.repo}/releases",
            params={"per_page": GITHUB_RELEASES_PER_REPO},
            headers={"Accept": "application/vnd.github+json"},
        )
        items: List[NewsItem] = []
        for release in resp.json() or []:
            if not isinstance(release, dict) or release.get("draft"):
                continue
            name = str(release.get("name") or release.get("tag_name") or "").strip()
            url = str(release.get("html_url") or "").strip()
            if not name or not url:
                continue
            items.append(
                NewsItem(
                    source=self.name,
                    title=f"{self.repo} release: {name}",
                    url=url,
                    published_at_ms=_parse_time_ms(release.get("published_at")),
                    item_id=f"github_{self.repo}_{release.get('id')}" if release.get("id") else "",
                )
            )
        return items


class CryptoPanicSource:
    name = "cryptopanic"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def fetch(self) -> List[NewsItem]:
        resp = _get(
            CRYPTOPANIC_URL,
            params={"auth_token": self.api_key, "currencies": "ETH", "filter": "hot", "public": "true"},
        )
        items: List[NewsItem] = []
        for post in (resp.json() or {}).get("results") or []:
            if not isinstance(post, dict):
                continue
            title = str(post.get("title") or "").strip()
            url = str(post.get("url") or "").strip()
            if not title or not url:
                continue
            items.append(
                NewsItem(
                    source=self.name,
                    title=title,
                    url=url,
                    published_at_ms=_parse_time_ms(post.get("published_at")),
                    item_id=f"cryptopanic_{post['id']}" if post.get("id") else "",
                )
            )
        return items


def _text(node: Optional[ET.Element]) -> str:
    return (node.text or "").strip() if node is not None else ""


def parse_feed(xml_text: str, source: str) -> List[NewsItem]:
    """RSS ``<item>`` and Atom ``<entry>`` elements, first few of each feed."""
    root = ET.fromstring(xml_text)
    items: List[NewsItem] = []
    for node in root.iter("item"):
        title = _text(node.find("title"))
        link = _text(node.find("link"))
        if title and link:
            items.append(NewsItem(source, title, link, _parse_time_ms(_text(node.find("pubDate")))))
    for node in root.iter(f"{ATOM_NS}entry"):
        title = _text(node.find(f"{ATOM_NS}title"))
        link_node = node.find(f"{ATOM_NS}link")
        link = (link_node.get("href") or "").strip() if link_node is not None else ""
        published = _text(node.find(f"{ATOM_NS}published")) or _text(node.find(f"{ATOM_NS}updated"))
        if title and link:
            items.append(NewsItem(source, title, link, _parse_time_ms(published)))
    return items[:RSS_ITEMS_PER_FEED]


class RssFeedSource:
    def __init__(self, url: str):
        self.url = url
        self.name = urlsplit(url).netloc or url

    def fetch(self) -> List[NewsItem]:
        return parse_feed(_get(self.url).text, self.name)


class NewsAggregator:
    """Pulls every source; one failing source never hides the others."""

    def __init__(self, sources: Sequence[NewsSource]):
        self.sources = list(sources)

    def fetch_latest(self, limit: int) -> List[NewsItem]:
        collected: List[NewsItem] = []
        for source in self.sources:
            try:
                collected.extend(source.fetch())
            except Exception as e:
                logger.warning("News source failed source=%s error=%s", getattr(source, "name", source), e)

        unique: List[NewsItem] = []
        seen_urls = set()
        for item in collected:
            if not item.title or not item.url:
                continue
            url = canonicalize_url(item.url)
            if url in seen_urls:
                continue
            seen_urls.add(url)
            unique.append(NewsItem(item.source, item.title, url, item.published_at_ms, item.item_id))
        unique.sort(key=lambda it: it.published_at_ms or 0, reverse=True)
        return unique[: max(0, limit)]


def build_news_aggregator(cfg: Config) -> NewsAggregator:
    sources: List[NewsSource] = [RssFeedSource(url) for url in cfg.news_feeds]
    sources.extend(GitHubReleasesSource(repo) for repo in cfg.news_github_repos)
    if cfg.news_cryptopanic_key:
        sources.append(CryptoPanicSource(cfg.news_cryptopanic_key))
    return NewsAggregator(sources)


def score_news_item(now_ms: int, item: NewsItem) -> float:
    if item.published_at_ms:
        age_hours = max(0, now_ms - item.published_at_ms) / 3_600_000
        recency = 0.5 ** (age_hours / RECENCY_HALF_LIFE_HOURS)
    else:
        recency = 0.25
    title = item.title.lower()
    boost = sum(weight for words, weight in _KEYWORD_BOOSTS if any(w in title for w in words))
    # Recency dominates; keywords adjust.
    return min(1.0, max(0.0, 0.72 * recency + 0.28 * min(1.0, boost)))


def rank_news_items(now_ms: int, items: Sequence[NewsItem]) -> List[NewsItem]:
    return sorted(
        items,
        key=lambda it: (-score_news_item(now_ms, it), -(it.published_at_ms or 0), it.fingerprint),
    )


def filter_unseen_news(state: Dict[str, Any], items: Sequence[NewsItem]) -> List[NewsItem]:
    return [item for item in items if not has_seen_news(state, item.fingerprint)]


@dataclass
class NewsPlan:
    should_post: bool
    item: Optional[NewsItem] = None
    reasons: List[str] = field(default_factory=list)


def _news_posts_today(state: Dict[str, Any], now: datetime) -> int:
    day_key = state.get("news_day_key")
    if not isinstance(day_key, str) or day_key < utc_day_key(now):
        return 0
    count = state.get("news_posts_today", 0)
    return int(count) if isinstance(count, (int, float)) else 0


def plan_news_post(cfg: Config, state: Dict[str, Any], now: datetime, unseen: Sequence[NewsItem]) -> NewsPlan:
    if not cfg.news_enabled:
        return NewsPlan(False, reasons=["NEWS_ENABLED=false"])
    if _news_posts_today(state, now) >= cfg.news_max_posts_per_day:
        return NewsPlan(False, reasons=["daily cap reached"])
    last_ms = state.get("news_last_post_ms")
    if isinstance(last_ms, (int, float)):
        elapsed_min = (to_ms(now) - last_ms) / 60_000
        if elapsed_min < cfg.news_min_interval_minutes:
            return NewsPlan(False, reasons=["min interval not met"])
    if not unseen:
        return NewsPlan(False, reasons=["no unseen items"])
    return NewsPlan(True, item=unseen[0], reasons=["unseen item"])


def render_news_post(item: NewsItem) -> str:
    """Intern memo with the source link; the title gives way before the link does."""
    prefix = "based intern memo 🧾 "
    room = NEWS_POST_MAX_CHARS - len(prefix) - len(item.url) - 1
    title = " ".join(item.title.split())
    if len(title) > room:
        title = title[: max(0, room - 1)].rstrip() + "…"
    return f"{prefix}{title}\n{item.url}"


def record_news_posted(state: Dict[str, Any], item: NewsItem, now: datetime) -> None:
    remember_news_seen(state, item.fingerprint)
    count = _news_posts_today(state, now)
    day_key = state.get("news_day_key")
    if not isinstance(day_key, str) or day_key < utc_day_key(now):
        state["news_day_key"] = utc_day_key(now)
    state["news_posts_today"] = count + 1
    state["news_last_post_ms"] = to_ms(now)


@dataclass
class NewsStepResult:
    reason: str
    item: Optional[NewsItem] = None
    post_results: List[PostResult] = field(default_factory=list)


def run_news_step(
    cfg: Config,
    state: Dict[str, Any],
    aggregator: NewsAggregator,
    poster: MultiChannelPoster,
    now: datetime,
    save_state: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> NewsStepResult:
    if not cfg.news_enabled:
        return NewsStepResult("disabled")

    now_ms = to_ms(now)
    fetched = aggregator.fetch_latest(max(cfg.news_max_items, 25))
    ranked = [it for it in rank_news_items(now_ms, fetched) if score_news_item(now_ms, it) >= cfg.news_min_score]
    candidates = ranked[: cfg.news_max_items]
    unseen = filter_unseen_news(state, candidates)
    plan = plan_news_post(cfg, state, now, unseen)
    if not plan.should_post or plan.item is None:
        logger.info(
            "News skipped reasons=%s items=%s unseen=%s", "; ".join(plan.reasons), len(candidates), len(unseen)
        )
        return NewsStepResult("skipped")

    item = plan.item
    logger.info("News post source=%s url=%s fingerprint=%s", item.source, item.url, item.fingerprint[:12])
    results = poster.post(state, render_news_post(item), "news", now)
    posted = any(r.posted for r in results)
    if posted or (results and all(r.reason in _ALREADY_POSTED for r in results)):
        record_news_posted(state, item, now)
        if save_state is not None:
            save_state(state)
        return NewsStepResult("posted" if posted else "already_posted", item, results)

    logger.info("News not posted; item stays unseen reasons=%s", ",".join(r.reason for r in results) or "-")
    return NewsStepResult("not_posted", item, results)
