from __future__ import annotations

import logging
from typing import Optional, Protocol

from .guardrails import Decision


logger = logging.getLogger("basedintern.autonomy")


class TradeExecutionError(RuntimeError):
    pass


class TradeExecutor(Protocol):
    def execute_buy(self, spend_wei: int) -> str:
        ...

    def execute_sell(self, sell_amount: int) -> str:
        ...


class UnconfiguredTradeExecutor:
    """Placeholder until a router integration exists; every call refuses."""

    def __init__(self, router_type: str = "unknown"):
        self.router_type = router_type

    def execute_buy(self, spend_wei: int) -> str:
        raise TradeExecutionError(f"No trade executor for router_type={self.router_type}; refusing BUY")

    def execute_sell(self, sell_amount: int) -> str:
        raise TradeExecutionError(f"No trade executor for router_type={self.router_type}; refusing SELL")


def execute_decision(decision: Decision, executor: TradeExecutor) -> Optional[str]:
    """Run an approved decision exactly once. Returns the tx hash, or None if nothing ran.

    Sending a transaction is not idempotent, so failures propagate to the
    caller and are never retried here.
    """
    if not decision.should_execute:
        return None
    if decision.action == "BUY" and decision.buy_spend_wei:
        logger.info("Executing BUY spend_wei=%s", decision.buy_spend_wei)
        return executor.execute_buy(decision.buy_spend_wei)
    if decision.action == "SELL" and decision.sell_amount:
        logger.info("Executing SELL amount=%s", decision.sell_amount)
        return executor.execute_sell(decision.sell_amount)
    raise TradeExecutionError(f"Approved decision has no amount: {decision}")
