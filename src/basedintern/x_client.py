"""X API v2 client on top of ``tweepy.Client`` (OAuth 1.0a user context).

Only the calls the agent needs: post a tweet (optionally as a reply), look up
the authenticated user, and read recent mentions. Posting retries network
errors and 5xx responses with a fixed 1s/3s/8s backoff; a 429 is surfaced at
once as ``RateLimitedError`` so the caller can open its circuit breaker.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import tweepy
from requests import exceptions as requests_exceptions

from .social_errors import DuplicateContentError, RateLimitedError, looks_like_duplicate_message


TWEET_MAX_CHARS = 280
POST_ATTEMPTS = 3
POST_BACKOFF_SECONDS = (1.0, 3.0, 8.0)


class XAuthError(Exception):
    pass


@dataclass
class XCredentials:
    api_key: str
    api_secret: str
    access_token: str
    access_secret: str

    @classmethod
    def from_config(cls, cfg: Any) -> "XCredentials":
        values = {
            "X_API_KEY": cfg.x_api_key,
            "X_API_SECRET": cfg.x_api_secret,
            "X_ACCESS_TOKEN": cfg.x_access_token,
            "X_ACCESS_SECRET": cfg.x_access_secret,
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise XAuthError(f"Missing X API credentials: {', '.join(missing)}")
        return cls(
            api_key=cfg.x_api_key,
            api_secret=cfg.x_api_secret,
            access_token=cfg.x_access_token,
            access_secret=cfg.x_access_secret,
        )


def truncate_for_tweet(text: str, max_len: int = TWEET_MAX_CHARS) -> str:
    if len(text) <= max_len:
        return text
    suffix = "…"
    return text[: max_len - len(suffix)].rstrip() + suffix


def summarize_x_error(err: Exception) -> str:
    messages = [m.strip() for m in getattr(err, "api_messages", None) or [] if isinstance(m, str) and m.strip()]
    if messages:
        return "; ".join(messages)[:300]
    return str(err).strip()[:300]


def rate_limit_retry_after_ms(resp: Any, now_s: Optional[float] = None) -> Optional[int]:
    """Milliseconds until the limit resets, from ``retry-after`` or ``x-rate-limit-reset``."""
    headers = getattr(resp, "headers", None) or {}
    retry_after = str(headers.get("retry-after") or "").strip()
    if retry_after.isdigit() and int(retry_after) > 0:
        return int(retry_after) * 1000
    reset = str(headers.get("x-rate-limit-reset") or "").strip()
    if reset.isdigit():
        current = time.time() if now_s is None else now_s
        remaining_ms = int((int(reset) - current) * 1000)
        if remaining_ms > 0:
            return remaining_ms
    return None


def _created_at_ms(raw: Any) -> Optional[int]:
    if isinstance(raw, datetime):
        return int(raw.timestamp() * 1000)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return int(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


def _raise_for_read_error(err: tweepy.TweepyException, what: str) -> None:
    summary = summarize_x_error(err)
    if isinstance(err, tweepy.TooManyRequests):
        raise RateLimitedError("x", retry_after_ms=rate_limit_retry_after_ms(err.response), detail=summary) from err
    if isinstance(err, (tweepy.Unauthorized, tweepy.Forbidden)):
        raise XAuthError(f"X auth error on {what}: {summary}") from err
    raise RuntimeError(f"X error on {what}: {summary}") from err


class XClient:
    def __init__(
        self,
        credentials: XCredentials,
        sleep: Callable[[float], None] = time.sleep,
        client: Optional[Any] = None,
    ):
        self.credentials = credentials
        self._sleep = sleep
        self.client = client or tweepy.Client(
            consumer_key=credentials.api_key,
            consumer_secret=credentials.api_secret,
            access_token=credentials.access_token,
            access_token_secret=credentials.access_secret,
        )

    def get_me_id(self) -> str:
        try:
            resp = self.client.get_me(user_fields="id", user_auth=True)
        except tweepy.TweepyException as e:
            _raise_for_read_error(e, "users/me")
        user_id = getattr(resp.data, "id", None) if resp.data else None
        if user_id is None or not str(user_id).strip():
            raise RuntimeError("X users/me response missing user id")
        return str(user_id)

    def get_mentions(self, user_id: str, since_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recent mentions of ``user_id``, newest first."""
        kwargs: Dict[str, Any] = {
            "id": user_id,
            "max_results": 100,
            "tweet_fields": ["created_at", "author_id"],
            "expansions": ["author_id"],
            "user_fields": ["username"],
            "user_auth": True,
        }
        if since_id:
            kwargs["since_id"] = since_id
        try:
            resp = self.client.get_users_mentions(**kwargs)
        except tweepy.TweepyException as e:
            _raise_for_read_error(e, "mentions")

        users = (resp.includes or {}).get("users") or []
        usernames = {str(u.id): getattr(u, "username", None) for u in users}
        mentions: List[Dict[str, Any]] = []
        for tweet in resp.data or []:
            if not getattr(tweet, "id", None):
                continue
            author_id = str(getattr(tweet, "author_id", "") or "")
            mentions.append(
                {
                    "id": str(tweet.id),
                    "text": str(getattr(tweet, "text", "") or ""),
                    "author_id": author_id,
                    "author_username": usernames.get(author_id) or None,
                    "created_at_ms": _created_at_ms(getattr(tweet, "created_at", None)),
                }
            )
        # Tweet ids are time ordered; longer id means newer.
        mentions.sort(key=lambda m: (len(m["id"]), m["id"]), reverse=True)
        return mentions

    def post_tweet(self, text: str, reply_to: Optional[str] = None) -> Dict[str, Any]:
        """Post a tweet and return the ``data`` object of the response."""
        kwargs: Dict[str, Any] = {"text": truncate_for_tweet(text), "user_auth": True}
        if reply_to:
            kwargs["in_reply_to_tweet_id"] = reply_to

        last_error: Optional[Exception] = None
        for attempt in range(1, POST_ATTEMPTS + 1):
            try:
                resp = self.client.create_tweet(**kwargs)
            except requests_exceptions.RequestException as e:
                last_error = RuntimeError(f"X network error while posting: {e}")
            except tweepy.TwitterServerError as e:
                last_error = RuntimeError(f"X server error: {summarize_x_error(e)}")
            except tweepy.TweepyException as e:
                self._raise_for_post_error(e)
            else:
                return self._tweet_data(resp)
            if attempt < POST_ATTEMPTS:
                self._sleep(POST_BACKOFF_SECONDS[min(attempt, len(POST_BACKOFF_SECONDS)) - 1])

        assert last_error is not None
        raise last_error

    def _raise_for_post_error(self, err: tweepy.TweepyException) -> None:
        summary = summarize_x_error(err)
        if isinstance(err, tweepy.TooManyRequests):
            raise RateLimitedError("x", retry_after_ms=rate_limit_retry_after_ms(err.response), detail=summary) from err
        if looks_like_duplicate_message(summary):
            raise DuplicateContentError("x", detail=summary) from err
        if isinstance(err, (tweepy.Unauthorized, tweepy.Forbidden)):
            raise XAuthError(
                f"X auth error: {summary}. Check the app has Read+Write "
                "permissions and regenerate the user access token/secret."
            ) from err
        raise RuntimeError(f"X error: {summary}") from err

    def _tweet_data(self, resp: Any) -> Dict[str, Any]:
        data = getattr(resp, "data", None) or {}
        tweet_id = data.get("id") if isinstance(data, dict) else None
        if tweet_id is None or not str(tweet_id).strip():
            raise RuntimeError("X response missing tweet id")
        return {**data, "id": str(tweet_id)}
