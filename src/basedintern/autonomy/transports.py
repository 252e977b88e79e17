from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..moltbook_client import MoltbookAuthError, MoltbookClient
from ..social_errors import DuplicateContentError, RateLimitedError
from ..x_client import XAuthError, XClient


logger = logging.getLogger("basedintern.autonomy")

MOLTBOOK_TITLE_MAX_CHARS = 120


@dataclass
class TransportResult:
    success: bool
    rate_limited: bool = False
    retry_after_ms: Optional[int] = None
    duplicate_rejected: bool = False
    detail: str = ""


class SocialTransport(Protocol):
    def post(self, text: str) -> TransportResult:
        ...


def _from_exception(exc: Exception) -> TransportResult:
    if isinstance(exc, RateLimitedError):
        return TransportResult(success=False, rate_limited=True, retry_after_ms=exc.retry_after_ms, detail=exc.detail)
    if isinstance(exc, DuplicateContentError):
        return TransportResult(success=False, duplicate_rejected=True, detail=exc.detail)
    return TransportResult(success=False, detail=str(exc))


class LogOnlyTransport:
    """Used when SOCIAL_MODE=none: the post is logged and counted as sent."""

    def __init__(self, name: str = "none"):
        self.name = name

    def post(self, text: str) -> TransportResult:
        logger.info("Social post (log only) channel=%s text=%s", self.name, text.replace("\n", " | "))
        return TransportResult(success=True, detail="logged")


class XApiTransport:
    def __init__(self, client: XClient):
        self.client = client

    def post(self, text: str) -> TransportResult:
        try:
            data = self.client.post_tweet(text)
        except XAuthError as e:
            logger.error("X API auth failure error=%s", e)
            return TransportResult(success=False, detail=str(e))
        except (RateLimitedError, DuplicateContentError, RuntimeError) as e:
            return _from_exception(e)
        return TransportResult(success=True, detail=f"tweet_id={data.get('id')}")


def moltbook_title(text: str) -> str:
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), "Based Intern update")
    if len(first_line) <= MOLTBOOK_TITLE_MAX_CHARS:
        return first_line
    return first_line[: MOLTBOOK_TITLE_MAX_CHARS - 3].rstrip() + "..."


class MoltbookTransport:
    def __init__(self, client: MoltbookClient, submolt: str = "general"):
        self.client = client
        self.submolt = submolt

    def post(self, text: str) -> TransportResult:
        try:
            result = self.client.create_post(submolt=self.submolt, title=moltbook_title(text), content=text)
        except MoltbookAuthError as e:
            logger.error("Moltbook auth failure error=%s", e)
            return TransportResult(success=False, detail=str(e))
        except (RateLimitedError, DuplicateContentError, RuntimeError, ValueError) as e:
            return _from_exception(e)
        post = result.get("post") if isinstance(result.get("post"), dict) else result
        return TransportResult(success=True, detail=f"post_id={post.get('id')}")
