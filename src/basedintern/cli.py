import argparse
import json
from typing import Any

from .autonomy.config import load_config
from .autonomy.guardrails import DecisionContext, ProposedAction, enforce_guardrails
from .autonomy.logging_utils import setup_logging
from .autonomy.poster import build_poster
from .autonomy.runner import build_tick_deps, run_loop, run_tick
from .autonomy.state import JsonStateStore, reset_daily_if_needed, utc_now
from .moltbook_client import MoltbookAuthError
from .x_client import XAuthError


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def cmd_tick(_: argparse.Namespace) -> None:
    """Run a single tick: watch, decide, maybe trade, maybe post."""
    cfg = load_config()
    setup_logging(cfg)
    report = run_tick(build_tick_deps(cfg))
    print_json(
        {
            "reason": report.reason,
            "activity": report.activity.reasons if report.activity else [],
            "action": report.decision.action if report.decision else None,
            "blocked_reason": report.decision.blocked_reason if report.decision else None,
            "tx_hash": report.tx_hash,
            "posts": [{"channel": r.channel, "posted": r.posted, "reason": r.reason} for r in report.post_results],
            "news": report.news.reason if report.news else None,
        }
    )


def cmd_run(args: argparse.Namespace) -> None:
    run_loop(max_iterations=args.iterations)


def cmd_status(_: argparse.Namespace) -> None:
    cfg = load_config()
    print_json(JsonStateStore(cfg.state_path).load())


def cmd_post(args: argparse.Namespace) -> None:
    """Send one post through the same gates the agent uses.

    Example:

        python -m basedintern.cli post --kind other --text "gm from the intern desk"
    """
    cfg = load_config()
    setup_logging(cfg)
    store = JsonStateStore(cfg.state_path)
    state = store.load()
    poster = build_poster(cfg, save_state=store.save)
    if args.channel:
        poster.channels = [(name, t) for name, t in poster.channels if name == args.channel]
        if not poster.channels:
            raise SystemExit(f"Channel {args.channel} is not configured (SOCIAL_MODE={cfg.social_mode}).")
    results = poster.post(state, args.text, args.kind, utc_now())
    store.save(state)
    print_json([{"channel": r.channel, "posted": r.posted, "reason": r.reason} for r in results])


def cmd_decide(args: argparse.Namespace) -> None:
    """Evaluate the guardrails for a proposal against current state without trading."""
    cfg = load_config()
    state = JsonStateStore(cfg.state_path).load()
    now = utc_now()
    reset_daily_if_needed(state, now)
    decision = enforce_guardrails(
        ProposedAction(args.action, args.rationale),
        DecisionContext(cfg=cfg, state=state, now=now, eth_wei=args.eth_wei, token_amount=args.token_amount),
    )
    print_json(decision.__dict__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Based Intern agent: guarded trading decisions and idempotent social receipts.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_tick = subparsers.add_parser("tick", help="Run one tick and exit")
    p_tick.set_defaults(func=cmd_tick)

    p_run = subparsers.add_parser("run", help="Run the agent loop")
    p_run.add_argument("--iterations", type=int, default=None, help="Stop after N loop iterations")
    p_run.set_defaults(func=cmd_run)

    p_status = subparsers.add_parser("status", help="Print the persisted agent state")
    p_status.set_defaults(func=cmd_status)

    p_post = subparsers.add_parser("post", help="Post text through the posting gates")
    p_post.add_argument("--text", required=True, help="Text to post")
    p_post.add_argument("--kind", default="other", help="'receipt' or any other kind (default: other)")
    p_post.add_argument("--channel", help="Only post to this configured channel, e.g. 'x_api' or 'moltbook'")
    p_post.set_defaults(func=cmd_post)

    p_decide = subparsers.add_parser("decide", help="Dry-evaluate the guardrails for a proposal")
    p_decide.add_argument("--action", required=True, help="BUY, SELL or HOLD")
    p_decide.add_argument("--rationale", default="manual evaluation", help="Rationale text")
    p_decide.add_argument("--eth-wei", type=int, default=0, help="ETH balance in wei")
    p_decide.add_argument("--token-amount", type=int, default=0, help="Token balance in raw units")
    p_decide.set_defaults(func=cmd_decide)

    return parser


def main() -> None:
    try:
        parser = build_parser()
        args = parser.parse_args()
        args.func(args)
    except (MoltbookAuthError, XAuthError) as e:
        raise SystemExit(str(e))
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        # Catch-all to avoid noisy tracebacks for common runtime issues
        raise SystemExit(f"Error: {e}")


if __name__ == "__main__":
    main()
