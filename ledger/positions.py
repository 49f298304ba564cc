"""Open positions derived from unconsumed BUY lots, and their live P&L."""
import logging
from typing import Iterable, Optional

from feeds.market_prices import find_market_price
from shared.schemas import (
    CurrentPosition,
    MarketPrice,
    PositionWithPnL,
    TokenBalance,
    TradeRecord,
)
from shared.utils import normalize_asset, safe_percent
from storage.db import LedgerStore

logger = logging.getLogger(__name__)

DUST_THRESHOLD = 0.0001


def aggregate_positions(
    lots: Iterable[TradeRecord],
    dust_threshold: float = DUST_THRESHOLD,
) -> list[CurrentPosition]:
    """Group open lots per asset, largest invested position first."""
    totals: dict[str, list[float]] = {}
    for lot in lots:
        if lot.remaining_quantity <= 0:
            continue
        qty_invested = totals.setdefault(lot.asset, [0.0, 0.0])
        qty_invested[0] += lot.remaining_quantity
        qty_invested[1] += lot.remaining_quantity * lot.entry_price

    positions = [
        CurrentPosition(
            asset=asset,
            quantity=quantity,
            avg_entry_price=invested / quantity,
            total_invested=invested,
        )
        for asset, (quantity, invested) in totals.items()
        if quantity > dust_threshold
    ]
    positions.sort(key=lambda p: p.total_invested, reverse=True)
    return positions


def calculate_positions_pnl(
    positions: Iterable[CurrentPosition],
    market_prices: list[MarketPrice],
    balances: Optional[list[TokenBalance]] = None,
) -> tuple[list[PositionWithPnL], float, float]:
    """Mark open positions to market.

    Returns (positions with P&L, total current value, total P&L). Assets
    without a live price are valued at 0.
    """
    raw_balances = {
        normalize_asset(b.symbol): b.balance for b in (balances or [])
    }
    result: list[PositionWithPnL] = []
    for position in positions:
        current_price = find_market_price(market_prices, position.asset)
        current_value = position.quantity * current_price
        pnl_usd = current_value - position.total_invested
        result.append(PositionWithPnL(
            symbol=position.asset,
            balance=f"{position.quantity:.6f}",
            raw_balance=raw_balances.get(normalize_asset(position.asset), "0"),
            quantity=position.quantity,
            avg_entry_price=position.avg_entry_price,
            current_price=current_price,
            total_invested=position.total_invested,
            current_value=current_value,
            price=current_price,
            usd_value=current_value,
            pnl_usd=pnl_usd,
            pnl_percent=safe_percent(pnl_usd, position.total_invested),
        ))

    total_value = sum(p.current_value for p in result)
    total_pnl = sum(p.pnl_usd for p in result)
    return result, total_value, total_pnl


class PositionAggregator:
    """Reads open positions straight from the ledger (never from snapshots)."""

    def __init__(self, store: LedgerStore, dust_threshold: float = DUST_THRESHOLD):
        self.store = store
        self.dust_threshold = dust_threshold

    async def get_open_positions(self, account_id: str) -> list[CurrentPosition]:
        lots = await self.store.query_open_lots(account_id)
        positions = aggregate_positions(lots, self.dust_threshold)
        logger.debug(
            "Open positions",
            extra={"account_id": account_id, "positions": len(positions)},
        )
        return positions
