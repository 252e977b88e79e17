from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import os


VALID_SOCIAL_MODES = {"none", "x_api", "moltbook", "multi"}
VALID_SOCIAL_TARGETS = ("x_api", "moltbook")


@dataclass
class Config:
    # Trading guardrails
    trading_enabled: bool
    kill_switch: bool
    dry_run: bool
    router_type: str
    router_address: Optional[str]
    daily_trade_cap: int
    min_interval_minutes: int
    max_spend_eth_per_trade: str
    sell_fraction_bps: int
    # Runtime
    loop_minutes: int
    state_path: Path
    journal_path: Optional[Path]
    # Chain
    rpc_url: Optional[str]
    wallet_address: Optional[str]
    token_address: Optional[str]
    token_decimals: int
    min_eth_delta: str
    min_token_delta: str
    # Social
    social_mode: str
    social_targets: List[str]
    social_dry_run: bool
    post_min_interval_minutes: int
    similarity_threshold: float
    x_api_key: Optional[str]
    x_api_secret: Optional[str]
    x_access_token: Optional[str]
    x_access_secret: Optional[str]
    x_mentions_enabled: bool
    x_poll_minutes: int
    moltbook_api_key: Optional[str]
    moltbook_submolt: str
    # News
    news_enabled: bool
    news_max_posts_per_day: int
    news_min_interval_minutes: int
    news_min_score: float
    news_max_items: int
    news_feeds: List[str]
    news_github_repos: List[str]
    news_cryptopanic_key: Optional[str]
    # LLM
    openai_api_key: Optional[str]
    openai_base_url: str
    openai_model: str
    openai_temperature: float
    # Logging
    log_level: str
    log_path: Optional[Path]

    @property
    def router_configured(self) -> bool:
        router_type = (self.router_type or "").strip().lower()
        return bool(self.router_address and router_type and router_type != "unknown")

    @property
    def x_api_configured(self) -> bool:
        return all([self.x_api_key, self.x_api_secret, self.x_access_token, self.x_access_secret])


def _parse_bool_env(env_key: str, default: str) -> bool:
    return os.getenv(env_key, default).strip().lower() in {"1", "true", "yes"}


def _parse_int_env(env_key: str, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    raw = os.getenv(env_key, "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _parse_csv_env(env_key: str) -> List[str]:
    value = os.getenv(env_key, "")
    if not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional_env(env_key: str) -> Optional[str]:
    return os.getenv(env_key, "").strip() or None


def parse_social_targets(raw: List[str]) -> List[str]:
    out: List[str] = []
    for item in raw:
        target = item.strip().lower()
        if target not in VALID_SOCIAL_TARGETS or target in out:
            continue
        out.append(target)
    return out


def load_config() -> Config:
    min_interval_minutes = _parse_int_env("MIN_INTERVAL_MINUTES", 60, minimum=0)

    social_mode = os.getenv("SOCIAL_MODE", "none").strip().lower()
    if social_mode not in VALID_SOCIAL_MODES:
        social_mode = "none"
    social_targets = parse_social_targets(_parse_csv_env("SOCIAL_MULTI_TARGETS"))
    if social_mode in VALID_SOCIAL_TARGETS:
        social_targets = [social_mode]
    elif social_mode == "none":
        social_targets = []

    try:
        similarity_threshold = float(os.getenv("SIMILARITY_THRESHOLD", "0.75"))
    except ValueError:
        similarity_threshold = 0.75
    similarity_threshold = min(1.0, max(0.0, similarity_threshold))

    try:
        openai_temperature = float(os.getenv("OPENAI_TEMPERATURE", "0.2"))
    except ValueError:
        openai_temperature = 0.2

    try:
        news_min_score = float(os.getenv("NEWS_MIN_SCORE", "0.5"))
    except ValueError:
        news_min_score = 0.5
    news_min_score = min(1.0, max(0.0, news_min_score))

    journal_path_str = os.getenv("JOURNAL_PATH", "data/journal.jsonl").strip()
    log_path_str = os.getenv("LOG_PATH", "").strip()

    return Config(
        trading_enabled=_parse_bool_env("TRADING_ENABLED", "false"),
        kill_switch=_parse_bool_env("KILL_SWITCH", "true"),
        dry_run=_parse_bool_env("DRY_RUN", "true"),
        router_type=os.getenv("ROUTER_TYPE", "unknown").strip() or "unknown",
        router_address=_optional_env("ROUTER_ADDRESS"),
        daily_trade_cap=_parse_int_env("DAILY_TRADE_CAP", 2, minimum=0),
        min_interval_minutes=min_interval_minutes,
        max_spend_eth_per_trade=os.getenv("MAX_SPEND_ETH_PER_TRADE", "0.0005").strip(),
        sell_fraction_bps=_parse_int_env("SELL_FRACTION_BPS", 500, minimum=0, maximum=10_000),
        loop_minutes=_parse_int_env("LOOP_MINUTES", 30, minimum=1),
        state_path=Path(os.getenv("STATE_PATH", "data/state.json")),
        journal_path=Path(journal_path_str) if journal_path_str else None,
        rpc_url=_optional_env("RPC_URL"),
        wallet_address=_optional_env("WALLET_ADDRESS"),
        token_address=_optional_env("TOKEN_ADDRESS"),
        token_decimals=_parse_int_env("TOKEN_DECIMALS", 18, minimum=0, maximum=36),
        min_eth_delta=os.getenv("MIN_ETH_DELTA", "0.00001").strip(),
        min_token_delta=os.getenv("MIN_TOKEN_DELTA", "1000").strip(),
        social_mode=social_mode,
        social_targets=social_targets,
        social_dry_run=_parse_bool_env("SOCIAL_DRY_RUN", "false"),
        post_min_interval_minutes=_parse_int_env("POST_MIN_INTERVAL_MINUTES", min_interval_minutes, minimum=0),
        similarity_threshold=similarity_threshold,
        x_api_key=_optional_env("X_API_KEY"),
        x_api_secret=_optional_env("X_API_SECRET"),
        x_access_token=_optional_env("X_ACCESS_TOKEN"),
        x_access_secret=_optional_env("X_ACCESS_SECRET"),
        x_mentions_enabled=_parse_bool_env("X_MENTIONS_ENABLED", "false"),
        x_poll_minutes=_parse_int_env("X_POLL_MINUTES", 2, minimum=1),
        moltbook_api_key=_optional_env("MOLTBOOK_API_KEY"),
        moltbook_submolt=os.getenv("MOLTBOOK_SUBMOLT", "general").strip() or "general",
        news_enabled=_parse_bool_env("NEWS_ENABLED", "false"),
        news_max_posts_per_day=_parse_int_env("NEWS_MAX_POSTS_PER_DAY", 2, minimum=0),
        news_min_interval_minutes=_parse_int_env("NEWS_MIN_INTERVAL_MINUTES", 120, minimum=0),
        news_min_score=news_min_score,
        news_max_items=_parse_int_env("NEWS_MAX_ITEMS_CONTEXT", 8, minimum=1),
        news_feeds=_parse_csv_env("NEWS_FEEDS"),
        news_github_repos=_parse_csv_env("NEWS_GITHUB_REPOS"),
        news_cryptopanic_key=_optional_env("NEWS_CRYPTO_PANIC_KEY"),
        openai_api_key=_optional_env("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_temperature=openai_temperature,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        log_path=Path(log_path_str) if log_path_str else None,
    )
