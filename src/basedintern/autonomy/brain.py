from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .config import Config
from .dedupe import normalize_str
from .guardrails import VALID_ACTIONS, ProposedAction
from .receipts import format_units


logger = logging.getLogger("basedintern.autonomy")

SYSTEM_PROMPT = (
    'You are "Based Intern": deadpan, underpaid, compliance-friendly.\n'
    "You produce one of: BUY, SELL, HOLD.\n"
    "Keep reasoning short and practical. Never encourage risky behavior.\n"
    "If trading is disabled, default to HOLD. You may propose BUY or SELL, "
    "but the runtime enforces its own guardrails.\n"
    'Respond with ONLY a JSON object: {"action": "BUY"|"SELL"|"HOLD", "rationale": "..."}'
)


@dataclass
class BrainContext:
    wallet: str
    eth_wei: int
    token_amount: int
    token_decimals: int
    price_text: Optional[str] = None


def fallback_policy(cfg: Config, ctx: BrainContext) -> ProposedAction:
    if not cfg.trading_enabled or cfg.kill_switch or cfg.dry_run:
        return ProposedAction("HOLD", "Safety mode active (or trading disabled). Holding.")
    if ctx.token_amount <= 0:
        return ProposedAction("BUY", "No INTERN balance. Proposing a tiny buy (guardrails will cap).")
    return ProposedAction("SELL", "Have INTERN balance. Proposing a small sell (fraction capped).")


def build_messages(cfg: Config, ctx: BrainContext) -> List[Dict[str, str]]:
    context = {
        "wallet": ctx.wallet,
        "eth": format_units(ctx.eth_wei, 18, 6),
        "intern": format_units(ctx.token_amount, ctx.token_decimals, 2),
        "price": ctx.price_text or "unknown",
        "trading_enabled": cfg.trading_enabled,
        "kill_switch": cfg.kill_switch,
        "dry_run": cfg.dry_run,
        "daily_trade_cap": cfg.daily_trade_cap,
        "max_spend_eth_per_trade": cfg.max_spend_eth_per_trade,
        "sell_fraction_bps": cfg.sell_fraction_bps,
    }
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"Current context:\n{json.dumps(context, ensure_ascii=False)}"},
    ]


def _extract_first_balanced_json_object(text: str) -> str:
    blob = normalize_str(text)
    start = blob.find("{")
    if start < 0:
        return ""

    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(blob)):
        ch = blob[idx]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return blob[start : idx + 1]
    return ""


def parse_json_object_lenient(text: str) -> Dict[str, Any]:
    blob = normalize_str(text).strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", blob, flags=re.IGNORECASE | re.DOTALL)
    candidates = [blob]
    if fenced:
        candidates.append(fenced.group(1).strip())
    candidates.append(_extract_first_balanced_json_object(blob))
    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("No JSON object found in model output")


def call_openai(cfg: Config, messages: List[Dict[str, str]]) -> Dict[str, Any]:
    if not cfg.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY not set")

    url = f"{cfg.openai_base_url}/chat/completions"
    headers = {
        "Authorization": f"Bearer {cfg.openai_api_key}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": cfg.openai_model,
        "messages": messages,
        "temperature": cfg.openai_temperature,
        "response_format": {"type": "json_object"},
    }
    logger.debug("LLM request model=%s", cfg.openai_model)
    resp = requests.post(url, headers=headers, data=json.dumps(payload), timeout=60)
    if resp.status_code >= 400:
        raise RuntimeError(f"OpenAI error {resp.status_code}: {resp.text[:300]}")

    content = resp.json()["choices"][0]["message"]["content"]
    logger.debug("LLM response chars=%s", len(content or ""))
    return parse_json_object_lenient(content)


def propose_action(cfg: Config, ctx: BrainContext) -> ProposedAction:
    """Ask the LLM when a key is configured, else (or on any failure) use the fallback policy.

    The proposal is only an input to the guardrails; nothing here can cause a trade.
    """
    if not cfg.openai_api_key:
        return fallback_policy(cfg, ctx)
    try:
        parsed = call_openai(cfg, build_messages(cfg, ctx))
        action = normalize_str(parsed.get("action")).strip().upper()
        if action not in VALID_ACTIONS:
            raise ValueError(f"LLM proposed invalid action: {parsed.get('action')!r}")
        rationale = normalize_str(parsed.get("rationale")).strip() or "LLM proposal."
        return ProposedAction(action, rationale)
    except (requests.RequestException, RuntimeError, ValueError, KeyError, IndexError, TypeError) as e:
        logger.warning("LLM propose failed; using fallback policy error=%s", e)
        return fallback_policy(cfg, ctx)
