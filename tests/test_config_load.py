import os
import unittest
from pathlib import Path
from unittest.mock import patch

from basedintern.autonomy.config import load_config, parse_social_targets


class ConfigLoadTests(unittest.TestCase):
    def test_load_config_returns_config(self) -> None:
        cfg = load_config()
        self.assertIsNotNone(cfg)

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults_are_safe(self) -> None:
        cfg = load_config()
        self.assertFalse(cfg.trading_enabled)
        self.assertTrue(cfg.kill_switch)
        self.assertTrue(cfg.dry_run)
        self.assertEqual(cfg.router_type, "unknown")
        self.assertFalse(cfg.router_configured)
        self.assertEqual(cfg.daily_trade_cap, 2)
        self.assertEqual(cfg.min_interval_minutes, 60)
        self.assertEqual(cfg.max_spend_eth_per_trade, "0.0005")
        self.assertEqual(cfg.sell_fraction_bps, 500)
        self.assertEqual(cfg.social_mode, "none")
        self.assertEqual(cfg.social_targets, [])
        self.assertEqual(cfg.post_min_interval_minutes, 60)
        self.assertEqual(cfg.similarity_threshold, 0.75)
        self.assertEqual(cfg.state_path, Path("data/state.json"))
        self.assertFalse(cfg.x_api_configured)

    @patch.dict(
        os.environ,
        {
            "TRADING_ENABLED": "true",
            "KILL_SWITCH": "0",
            "DRY_RUN": "no",
            "ROUTER_TYPE": "aerodrome",
            "ROUTER_ADDRESS": "0xabc",
            "DAILY_TRADE_CAP": "-4",
            "SELL_FRACTION_BPS": "25000",
            "SOCIAL_MODE": "MULTI",
            "SOCIAL_MULTI_TARGETS": "moltbook, x_api, bogus, moltbook",
            "SIMILARITY_THRESHOLD": "not-a-number",
            "POST_MIN_INTERVAL_MINUTES": "5",
        },
        clear=True,
    )
    def test_env_parsing_and_clamping(self) -> None:
        cfg = load_config()
        self.assertTrue(cfg.trading_enabled)
        self.assertFalse(cfg.kill_switch)
        self.assertFalse(cfg.dry_run)
        self.assertTrue(cfg.router_configured)
        self.assertEqual(cfg.daily_trade_cap, 0)
        self.assertEqual(cfg.sell_fraction_bps, 10_000)
        self.assertEqual(cfg.social_mode, "multi")
        self.assertEqual(cfg.social_targets, ["moltbook", "x_api"])
        self.assertEqual(cfg.similarity_threshold, 0.75)
        self.assertEqual(cfg.post_min_interval_minutes, 5)

    @patch.dict(os.environ, {"SOCIAL_MODE": "moltbook", "SOCIAL_MULTI_TARGETS": "x_api"}, clear=True)
    def test_single_mode_targets_itself(self) -> None:
        self.assertEqual(load_config().social_targets, ["moltbook"])

    @patch.dict(os.environ, {"SOCIAL_MODE": "carrier-pigeon"}, clear=True)
    def test_unknown_social_mode_falls_back_to_none(self) -> None:
        self.assertEqual(load_config().social_mode, "none")

    @patch.dict(os.environ, {}, clear=True)
    def test_news_is_off_by_default(self) -> None:
        cfg = load_config()
        self.assertFalse(cfg.news_enabled)
        self.assertEqual(cfg.news_max_posts_per_day, 2)
        self.assertEqual(cfg.news_min_interval_minutes, 120)
        self.assertEqual(cfg.news_min_score, 0.5)
        self.assertEqual(cfg.news_feeds, [])
        self.assertIsNone(cfg.news_cryptopanic_key)

    @patch.dict(
        os.environ,
        {
            "NEWS_ENABLED": "true",
            "NEWS_FEEDS": "https://blog.example/rss, https://dev.example/atom",
            "NEWS_GITHUB_REPOS": "base-org/node",
            "NEWS_MIN_SCORE": "7",
        },
        clear=True,
    )
    def test_news_env_parsing(self) -> None:
        cfg = load_config()
        self.assertTrue(cfg.news_enabled)
        self.assertEqual(cfg.news_feeds, ["https://blog.example/rss", "https://dev.example/atom"])
        self.assertEqual(cfg.news_github_repos, ["base-org/node"])
        self.assertEqual(cfg.news_min_score, 1.0)

    def test_parse_social_targets_drops_unknown_and_repeats(self) -> None:
        self.assertEqual(parse_social_targets(["X_API", "x_api", "mastodon"]), ["x_api"])


if __name__ == "__main__":
    unittest.main()
