"""Live market prices from the market overview API."""
import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from shared.schemas import MarketPrice
from shared.utils import normalize_asset

logger = logging.getLogger(__name__)

QUOTE_CURRENCY = "USDC"


def market_symbol(asset: str) -> str:
    """Ticker symbol the market API uses for an asset (BTC -> BTCUSDT)."""
    return f"{normalize_asset(asset).lstrip('$').upper()}USDT"


def find_market_price(market_prices: list[MarketPrice], asset: str) -> float:
    """Latest USD price of `asset`, or 0 when the feed has none."""
    if normalize_asset(asset) == QUOTE_CURRENCY:
        return 1.0
    wanted = market_symbol(asset)
    for p in market_prices:
        if p.symbol.upper() == wanted:
            return p.price or 0.0
    return 0.0


def format_market_overview(market_prices: list[MarketPrice]) -> str:
    """Pretty JSON of the tickers for the agent prompt."""
    if not market_prices:
        return "Market overview unavailable"
    return json.dumps(
        [p.model_dump(by_alias=True) for p in market_prices], indent=2
    )


class MarketPriceFeed:
    """Fetches ticker prices for a symbol list over HTTP."""

    def __init__(
        self,
        api_url: str,
        symbols: list[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.symbols = symbols
        self.timeout = timeout
        self._transport = transport

    async def get_prices(self, symbols: Optional[list[str]] = None) -> list[MarketPrice]:
        """Fetch prices; an unreachable or failing API yields an empty list."""
        wanted = symbols or self.symbols
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(self.api_url, params={"symbols": ",".join(wanted)})
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch market prices: {e}")
            return []

        if not isinstance(payload, dict) or not payload.get("success"):
            logger.warning("Market API returned no data", extra={"url": self.api_url})
            return []

        prices = []
        for entry in payload.get("data") or []:
            try:
                prices.append(MarketPrice.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed ticker", extra={"entry": str(entry)[:200]})
        return prices
