"""Read side: dashboard payloads rebuilt from the ledger, snapshots and live prices."""
import logging
from datetime import timedelta
from typing import Optional, Union

import aiosqlite

from feeds.market_prices import MarketPriceFeed, find_market_price
from shared.schemas import (
    AssetAllocation,
    ChartPoint,
    DashboardData,
    DashboardTrade,
    MarketPrice,
    PortfolioSnapshot,
    TradeDetail,
    TradeRecord,
    TradeType,
)
from shared.utils import normalize_asset, round_to_two, safe_percent
from ledger.snapshots import DEFAULT_REASONING, parse_ai_reasoning
from storage.db import LedgerStore
from storage.errors import LedgerError

logger = logging.getLogger(__name__)

NO_DATA = "No data available"
NO_TRADE_REASONING = "No reasoning data available for this trade."

# SQLite INTEGER PRIMARY KEY is a signed 64-bit value
MAX_TRADE_ID = 2**63 - 1


def trade_pnl(trade: TradeRecord, market_prices: list[MarketPrice]) -> float:
    """Realized P&L for a SELL; unrealized P&L on the still-open part of a BUY."""
    if trade.type == TradeType.SELL:
        return trade.realized_pnl
    live_price = find_market_price(market_prices, trade.asset)
    if live_price <= 0:
        return 0.0
    return (live_price - trade.entry_price) * trade.remaining_quantity


def build_trade_row(
    trade: TradeRecord,
    market_prices: list[MarketPrice],
    portfolio_value: float,
) -> DashboardTrade:
    pnl = trade_pnl(trade, market_prices)
    pnl_percent = safe_percent(pnl, trade.amount_usd) if trade.entry_price > 0 else 0.0
    return DashboardTrade(
        id=trade.id,
        timestamp=trade.timestamp,
        type=trade.type,
        asset=normalize_asset(trade.asset),
        quantity=trade.quantity,
        price=trade.entry_price,
        amount=trade.amount_usd,
        pnl=round_to_two(pnl),
        pnl_percent=round_to_two(pnl_percent),
        portfolio_value=portfolio_value,
        remaining_quantity=trade.remaining_quantity,
        realized_pnl=trade.realized_pnl,
    )


def build_asset_distribution(snapshot: PortfolioSnapshot) -> list[AssetAllocation]:
    total = snapshot.total_usd_value
    return [
        AssetAllocation(
            symbol=normalize_asset(pos.symbol),
            value=pos.usd_value,
            percentage=safe_percent(pos.usd_value, total),
            change=pos.pnl_percent or 0.0,
        )
        for pos in snapshot.snapshot_data.positions
    ]


def build_stats_chart(snapshots: list[PortfolioSnapshot], points: int) -> list[ChartPoint]:
    """Newest `points` snapshots (given newest first) in chronological order."""
    chart = []
    for snap in reversed(snapshots[:points]):
        created = snap.created_at
        chart.append(ChartPoint(
            time_label=f"{created.hour}:{created.minute:02d}",
            value=round_to_two(snap.total_usd_value),
            timestamp=created,
            pnl=snap.pnl_usd or 0.0,
        ))
    return chart


class DashboardReconstructor:
    """Answers dashboard reads. Never mutates the ledger and never raises for missing data."""

    def __init__(
        self,
        store: LedgerStore,
        price_feed: MarketPriceFeed,
        trade_limit: int = 100,
        chart_points: int = 500,
        context_window: timedelta = timedelta(hours=1),
    ):
        self.store = store
        self.price_feed = price_feed
        self.trade_limit = trade_limit
        self.chart_points = chart_points
        self.context_window = context_window

    async def build_dashboard(self, account_id: str) -> DashboardData:
        try:
            snapshots = await self.store.query_snapshots(account_id)
        except (LedgerError, aiosqlite.Error) as e:
            logger.error(f"Dashboard snapshot query failed: {e}", extra={"account_id": account_id})
            return DashboardData()

        if not snapshots:
            return DashboardData(last_reasoning=NO_DATA)

        latest = snapshots[0]
        earliest = snapshots[-1]
        total_value = latest.total_usd_value
        starting_value = earliest.total_usd_value
        accrued_yield = total_value - starting_value

        try:
            trades = await self.store.query_trades(account_id, self.trade_limit)
        except (LedgerError, aiosqlite.Error) as e:
            logger.error(f"Dashboard trade query failed: {e}", extra={"account_id": account_id})
            trades = []

        market_prices = await self._live_prices(trades)

        return DashboardData(
            total_value=round_to_two(total_value),
            starting_value=round_to_two(starting_value),
            goal_value=round_to_two(starting_value * 2),
            accrued_yield=round_to_two(accrued_yield),
            yield_percent=round_to_two(safe_percent(accrued_yield, starting_value)),
            trades=[build_trade_row(t, market_prices, total_value) for t in trades],
            asset_distribution=build_asset_distribution(latest),
            stats_chart=build_stats_chart(snapshots, self.chart_points),
            last_reasoning=parse_ai_reasoning(latest.snapshot_data, DEFAULT_REASONING, 200),
            request_count=len(snapshots),
            last_update=latest.created_at,
        )

    async def get_trade_detail(self, trade_id: Union[int, str]) -> Optional[TradeDetail]:
        """Trade plus the reasoning of the first snapshot taken after it.

        Only snapshots within the look-ahead window after the trade qualify;
        a snapshot taken before the trade is never used, even if closer.
        """
        try:
            trade_id = int(trade_id)
        except (TypeError, ValueError):
            return None
        if not 0 < trade_id <= MAX_TRADE_ID:
            return None

        try:
            trade = await self.store.get_trade(trade_id)
            if trade is None:
                return None
            snapshot = await self.store.find_snapshot_after(
                trade.account_id, trade.timestamp, trade.timestamp + self.context_window
            )
        except (LedgerError, aiosqlite.Error) as e:
            logger.error(f"Error fetching trade detail: {e}", extra={"trade_id": trade_id})
            return None

        reasoning = NO_TRADE_REASONING
        market_conditions = None
        portfolio_value = 0.0
        if snapshot is not None:
            portfolio_value = snapshot.total_usd_value or 0.0
            reasoning = parse_ai_reasoning(snapshot.snapshot_data, NO_TRADE_REASONING, 500)
            market_conditions = snapshot.snapshot_data.market_analysis or None

        pnl = trade.realized_pnl if trade.type == TradeType.SELL else 0.0

        return TradeDetail(
            id=trade.id,
            timestamp=trade.timestamp,
            asset=normalize_asset(trade.asset),
            type=trade.type,
            quantity=trade.quantity,
            price=trade.entry_price,
            amount=trade.amount_usd,
            pnl=round_to_two(pnl),
            reasoning=reasoning,
            market_conditions=market_conditions,
            portfolio_value=round_to_two(portfolio_value),
        )

    async def _live_prices(self, trades: list[TradeRecord]) -> list[MarketPrice]:
        if not any(t.type == TradeType.BUY and t.remaining_quantity > 0 for t in trades):
            return []
        return await self.price_feed.get_prices()
