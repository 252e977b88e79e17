import json
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests
from requests import exceptions as requests_exceptions

from .social_errors import DuplicateContentError, RateLimitedError, looks_like_duplicate_message


MOLTBOOK_BASE_URL = "https://www.moltbook.com/api/v1"
MOLTBOOK_BASE_ENV = "MOLTBOOK_API_BASE"
CREDENTIALS_PATH = Path.home() / ".config" / "moltbook" / "credentials.json"
_MOLTBOOK_ALLOWED_PREFIX = "https://www.moltbook.com/api/v1"
POST_ATTEMPTS = 3
POST_TIMEOUT_SECONDS = 30


class MoltbookAuthError(Exception):
    pass


@dataclass
class MoltbookCredentials:
    api_key: str
    agent_name: Optional[str] = None
    source: str = "unknown"

    @classmethod
    def load(cls, api_key: Optional[str] = None) -> "MoltbookCredentials":
        """Load credentials from an explicit key, env, or ~/.config/moltbook/credentials.json.

        Priority:
        1. explicit ``api_key`` argument
        2. MOLTBOOK_API_KEY env var
        3. credentials.json file
        """
        source = "config"
        if not api_key:
            api_key = os.getenv("MOLTBOOK_API_KEY")
            source = "env:MOLTBOOK_API_KEY"
        agent_name: Optional[str] = os.getenv("MOLTBOOK_AGENT_NAME")

        if not api_key and CREDENTIALS_PATH.exists():
            with CREDENTIALS_PATH.open("r", encoding="utf-8") as f:
                data = json.load(f)
            api_key = data.get("api_key")
            agent_name = data.get("agent_name")
            source = f"file:{CREDENTIALS_PATH}"

        if api_key is not None:
            api_key = str(api_key).strip()

        if not api_key:
            raise MoltbookAuthError(
                "Missing Moltbook API key. Set MOLTBOOK_API_KEY or create "
                f"{CREDENTIALS_PATH} with an 'api_key' field."
            )

        return cls(api_key=api_key, agent_name=agent_name, source=source)


def parse_retry_after_ms(body: Any, header_value: Optional[str]) -> Optional[int]:
    """Retry hint from a 429 body (seconds or minutes) or the Retry-After header."""
    if isinstance(body, dict):
        secs = body.get("retry_after_seconds")
        mins = body.get("retry_after_minutes")
        if isinstance(secs, (int, float)) and secs > 0:
            return int(secs * 1000)
        if isinstance(mins, (int, float)) and mins > 0:
            return int(mins * 60_000)
    raw = str(header_value or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if value <= 0:
        return None
    # Some servers send milliseconds; anything this large is not a seconds count.
    if value > 60_000:
        return int(value)
    return int(value * 1000)


def _json_or_empty(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _backoff_seconds(attempt: int) -> float:
    # 0.5s, 1s, 2s plus a little jitter
    base = min(0.5 * (2 ** max(0, attempt - 1)), 4.0)
    return base + random.random() * 0.25


class MoltbookClient:
    """Minimal Moltbook API client for the agent's posting needs.

    SECURITY: This client only ever sends your API key to https://www.moltbook.com.
    Never modify it to talk to other domains with your key.
    """

    def __init__(
        self,
        credentials: Optional[MoltbookCredentials] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.credentials = credentials or MoltbookCredentials.load()
        env_base = os.getenv(MOLTBOOK_BASE_ENV)
        self.base_url = self._normalize_base_url(env_base or MOLTBOOK_BASE_URL)
        self._sleep = sleep

    def _normalize_base_url(self, raw: str) -> str:
        candidate = str(raw).strip().rstrip("/")
        if candidate.startswith(_MOLTBOOK_ALLOWED_PREFIX):
            return candidate
        # Enforce the official API host so auth headers are never sent elsewhere.
        return MOLTBOOK_BASE_URL

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        path = path.lstrip("/")
        return f"{self.base_url}/{path}"

    def _raise_for_error(self, resp: requests.Response) -> None:
        if resp.status_code < 400:
            return
        data = _json_or_empty(resp)
        message = data.get("error") or data.get("hint") or resp.text or "unknown error"

        if resp.status_code == 429:
            raise RateLimitedError(
                "moltbook",
                retry_after_ms=parse_retry_after_ms(data, resp.headers.get("Retry-After")),
                detail=message,
            )
        if resp.status_code == 409 or looks_like_duplicate_message(message):
            raise DuplicateContentError("moltbook", detail=message)
        if resp.status_code in {401, 403}:
            raise MoltbookAuthError(f"Moltbook auth error {resp.status_code}: {message}")
        raise RuntimeError(f"Moltbook error {resp.status_code}: {message}")

    def create_post(self, submolt: str, title: str, content: str) -> Dict[str, Any]:
        """Create a text post, retrying network errors and 5xx a bounded number of times.

        Rate limits, duplicates and auth failures are raised on the first
        response; only transient failures are retried.
        """
        if not content.strip():
            raise ValueError("'content' must be provided for a post.")

        payload = {"submolt": submolt, "title": title, "content": content}
        last_error: Optional[Exception] = None
        for attempt in range(1, POST_ATTEMPTS + 1):
            try:
                resp = requests.post(
                    self._url("posts"),
                    headers=self._headers,
                    data=json.dumps(payload),
                    timeout=POST_TIMEOUT_SECONDS,
                )
            except requests_exceptions.RequestException as e:
                last_error = RuntimeError(f"Moltbook network error while creating a post: {e}")
            else:
                if resp.status_code < 500:
                    self._raise_for_error(resp)
                    return _json_or_empty(resp)
                last_error = RuntimeError(f"Moltbook error {resp.status_code}: {resp.text[:300]}")
            if attempt < POST_ATTEMPTS:
                self._sleep(_backoff_seconds(attempt))

        assert last_error is not None
        raise last_error
