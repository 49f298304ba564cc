"""Trading agent: asks the LLM for a BUY/SELL/HOLD decision and quotes it."""
import json
import logging
import re
import time
from typing import Optional

from execution.tokens import USDC_SYMBOL, to_raw, token_by_symbol
from feeds.market_prices import find_market_price
from shared.ollama_client import OllamaClient
from shared.schemas import AgentContext, AgentDecision, Quote, TradeAction, utcnow
from shared.utils import normalize_asset

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[^{}]*\}", re.DOTALL)
THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)

# Formatted amounts never carry more precision than the ledger stores
MAX_FORMAT_DECIMALS = 8


def parse_decision(text: str) -> Optional[dict]:
    """Last JSON object in the reply that carries an "action" key."""
    for candidate in reversed(JSON_OBJECT_PATTERN.findall(text or "")):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict) and "action" in data:
            return data
    return None


def _format_amount(value: float, decimals: int) -> str:
    return f"{value:.{min(decimals, MAX_FORMAT_DECIMALS)}f}"


def build_quote(
    action: TradeAction, asset: str, amount: float, context: AgentContext
) -> Optional[Quote]:
    """Price a USDC swap at the live market price.

    BUY spends `amount` USDC (capped at the USDC balance); SELL sells
    `amount` tokens (capped at the held balance). Returns None when the swap
    cannot be priced or funded.
    """
    token = token_by_symbol(asset)
    usdc = token_by_symbol(USDC_SYMBOL)
    if token is None or token.symbol == USDC_SYMBOL:
        logger.warning("Agent picked an untradable asset", extra={"asset": asset})
        return None
    price = find_market_price(context.market_prices, token.symbol)
    if price <= 0:
        logger.warning("No live price for quote", extra={"asset": token.symbol})
        return None

    if action == TradeAction.BUY:
        amount_in = min(amount, context.usdc_value)
        amount_out = amount_in / price
        origin, destination = usdc, token
    else:
        held = sum(
            float(b.balance_formatted) for b in context.balances
            if b.asset_id == token.asset_id
        )
        amount_in = min(amount, held)
        amount_out = amount_in * price
        origin, destination = token, usdc

    if amount_in <= 0 or amount_out <= 0:
        logger.warning(
            "Swap amount not fundable",
            extra={"action": action.value, "asset": token.symbol, "requested": amount},
        )
        return None

    amount_in_formatted = _format_amount(amount_in, origin.decimals)
    amount_out_formatted = _format_amount(amount_out, destination.decimals)
    return Quote(
        origin_asset=origin.asset_id,
        destination_asset=destination.asset_id,
        amount_in=str(to_raw(float(amount_in_formatted), origin.decimals)),
        amount_in_formatted=amount_in_formatted,
        amount_out=str(to_raw(float(amount_out_formatted), destination.decimals)),
        amount_out_formatted=amount_out_formatted,
        min_amount_out=str(to_raw(float(amount_out_formatted), destination.decimals)),
        timestamp=utcnow().isoformat(),
    )


class TradingAgent:
    """Single-model decision maker over the portfolio context."""

    def __init__(self, client: OllamaClient, model: str):
        self.client = client
        self.model = model

    async def decide(self, context: AgentContext) -> AgentDecision:
        start = time.monotonic()
        try:
            result = await self.client.chat_async(
                messages=[
                    {"role": "system", "content": context.system_prompt},
                    {"role": "user", "content": "Review the portfolio and decide."},
                ],
                model=self.model,
                temperature=0.2,
                max_tokens=4096,
            )
        except Exception as e:
            latency = (time.monotonic() - start) * 1000
            logger.error(f"Trading agent error: {e}")
            return AgentDecision(
                content=f"Error: {e}",
                action=TradeAction.HOLD,
                model=self.model,
                latency_ms=latency,
            )

        latency = (time.monotonic() - start) * 1000
        response = (result.get("response") or "").strip()
        content = response or THINK_PATTERN.sub("", result.get("merged", "")).strip()
        return self._parse(content, result.get("merged", ""), context, latency)

    def _parse(
        self, content: str, merged: str, context: AgentContext, latency_ms: float
    ) -> AgentDecision:
        """Prefer the decision in the reply; fall back to the thinking text."""
        data = parse_decision(content) or parse_decision(merged)
        action = TradeAction.HOLD
        quote = None

        if data:
            try:
                action = TradeAction(str(data.get("action", "HOLD")).upper())
            except ValueError:
                action = TradeAction.HOLD

        if action != TradeAction.HOLD:
            asset = normalize_asset(str(data.get("asset", "")))
            try:
                amount = float(data.get("amount", 0))
            except (TypeError, ValueError):
                amount = 0.0
            quote = build_quote(action, asset, amount, context) if amount > 0 else None
            if quote is None:
                action = TradeAction.HOLD

        logger.info(
            "Agent decision",
            extra={"action": action.value, "quoted": quote is not None, "latency_ms": round(latency_ms)},
        )
        return AgentDecision(
            content=content,
            action=action,
            quote=quote,
            model=self.model,
            latency_ms=latency_ms,
        )
