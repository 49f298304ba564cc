"""Test helpers shared across test files."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from execution.tokens import to_raw, token_by_symbol
from shared.ollama_client import _merge_fields
from shared.schemas import MarketPrice, Quote, TradeRecord, TradeType

ACCOUNT = "trader.near"
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def mcr(response="", thinking="", eval_count=0, eval_duration=0):
    """Build a mock Ollama chat return dict with merged field.

    Use instead of raw dicts so mocks match ollama_client.chat_async() format.
    Short name (mock chat response) for compact test code.
    """
    return {
        "response": response,
        "thinking": thinking,
        "merged": _merge_fields(response, thinking),
        "eval_count": eval_count,
        "eval_duration": eval_duration,
    }


def at(minutes: float) -> datetime:
    """T0 plus `minutes`."""
    return T0 + timedelta(minutes=minutes)


def lot(lot_id, quantity, entry_price, remaining=None, asset="BTC", minutes=0):
    """In-memory BUY lot for pure matching tests."""
    return TradeRecord(
        id=lot_id,
        timestamp=at(minutes),
        account_id=ACCOUNT,
        asset=asset,
        type=TradeType.BUY,
        quantity=quantity,
        entry_price=entry_price,
        amount_usd=quantity * entry_price,
        remaining_quantity=quantity if remaining is None else remaining,
    )


def price(symbol, value):
    return MarketPrice(symbol=symbol, price=value)


def price_feed(*prices):
    """MarketPriceFeed stand-in returning fixed prices."""
    feed = MagicMock()
    feed.get_prices = AsyncMock(return_value=list(prices))
    return feed


def make_quote(origin, destination, amount_in, amount_out):
    """Quote between two listed symbols, e.g. make_quote("USDC", "BTC", "100", "0.002")."""
    src = token_by_symbol(origin)
    dst = token_by_symbol(destination)
    return Quote(
        origin_asset=src.asset_id,
        destination_asset=dst.asset_id,
        amount_in=str(to_raw(float(amount_in), src.decimals)),
        amount_in_formatted=amount_in,
        amount_out=str(to_raw(float(amount_out), dst.decimals)),
        amount_out_formatted=amount_out,
    )
