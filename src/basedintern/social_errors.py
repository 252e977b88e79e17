from typing import Any, Optional


class RateLimitedError(RuntimeError):
    def __init__(self, platform: str, retry_after_ms: Optional[int] = None, detail: Any = ""):
        self.platform = platform
        self.retry_after_ms = retry_after_ms
        self.detail = str(detail or "")
        hint = f"{retry_after_ms}ms" if retry_after_ms else "unknown"
        super().__init__(f"{platform} rate limited; retry after {hint}")


class DuplicateContentError(RuntimeError):
    """The platform refused the post because identical content already exists."""

    def __init__(self, platform: str, detail: Any = ""):
        self.platform = platform
        self.detail = str(detail or "")
        super().__init__(f"{platform} rejected duplicate content: {self.detail}")


def looks_like_duplicate_message(message: Any) -> bool:
    text = str(message or "").lower()
    return "duplicate" in text or "already posted" in text or "already exists" in text
