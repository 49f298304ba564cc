"""FIFO lot matching: realize SELLs against the oldest open BUY lots."""
import logging
from datetime import datetime
from typing import Iterable, Optional

from shared.schemas import (
    FifoResult,
    LotMatch,
    MatchingAnomaly,
    SellResult,
    TradeRecord,
)
from shared.utils import normalize_asset, round_to_two
from storage.db import LedgerStore

logger = logging.getLogger(__name__)

# Below this a leftover sell quantity is float noise, not a short sell
QUANTITY_EPSILON = 1e-9


def match_fifo(
    lots: Iterable[TradeRecord],
    sell_quantity: float,
    exit_price: float,
) -> FifoResult:
    """Consume `lots` oldest first until `sell_quantity` is filled.

    `lots` must already be in FIFO order. Nothing is rounded here; callers
    round at the point they persist or display.
    """
    remaining_sell = sell_quantity
    realized_pnl = 0.0
    entry_numerator = 0.0
    matched_total = 0.0
    matches: list[LotMatch] = []

    for lot in lots:
        if remaining_sell <= QUANTITY_EPSILON:
            break
        available = lot.remaining_quantity
        matched = min(remaining_sell, available)
        if matched <= 0:
            continue

        pnl = (exit_price - lot.entry_price) * matched
        realized_pnl += pnl
        entry_numerator += lot.entry_price * matched
        matched_total += matched
        remaining_sell -= matched

        matches.append(LotMatch(
            lot_id=lot.id,
            entry_price=lot.entry_price,
            matched_quantity=matched,
            remaining_after=max(0.0, available - matched),
            realized_pnl=pnl,
        ))

    weighted_avg = entry_numerator / matched_total if matched_total > 0 else 0.0
    unmatched = remaining_sell if remaining_sell > QUANTITY_EPSILON else 0.0

    return FifoResult(
        matches=matches,
        realized_pnl=realized_pnl,
        matched_quantity=matched_total,
        weighted_avg_entry_price=weighted_avg,
        unmatched_quantity=unmatched,
    )


class LotMatcher:
    """Records trades in the ledger, FIFO-matching every SELL."""

    def __init__(self, store: LedgerStore):
        self.store = store

    async def record_buy(
        self,
        account_id: str,
        asset: str,
        quantity: float,
        entry_price: float,
        amount_usd: float,
        timestamp: Optional[datetime] = None,
    ) -> Optional[int]:
        """Open a new lot."""
        asset = normalize_asset(asset)
        trade_id = await self.store.insert_buy(
            account_id, asset, quantity, entry_price, amount_usd, timestamp
        )
        logger.info(
            "BUY stored",
            extra={
                "trade_id": trade_id,
                "asset": asset,
                "quantity": quantity,
                "entry_price": round(entry_price, 4),
                "amount_usd": round_to_two(amount_usd),
            },
        )
        return trade_id

    async def match_and_record_sell(
        self,
        account_id: str,
        asset: str,
        sell_quantity: float,
        exit_price: float,
        amount_usd: float,
        timestamp: Optional[datetime] = None,
    ) -> Optional[SellResult]:
        """Match a SELL against open lots and write it, atomically.

        Lot updates are applied one at a time, oldest lot first, and the
        SELL row is inserted in the same transaction. The store holds other
        readers off until it commits, so they never see a partial match.
        A SELL larger than the open quantity is still recorded; the excess
        is reported as a MatchingAnomaly.
        Returns None when the store is unavailable.
        """
        asset = normalize_asset(asset)
        if not self.store.available:
            await self.store.insert_sell(
                account_id, asset, sell_quantity, 0.0, amount_usd, 0.0, timestamp
            )
            return None
        if sell_quantity <= 0:
            raise ValueError(f"SELL quantity must be positive, got {sell_quantity}")

        async with self.store.transaction():
            lots = await self.store.query_open_lots(account_id, asset)
            result = match_fifo(lots, sell_quantity, exit_price)

            for match in result.matches:
                await self.store.update_remaining_quantity(match.lot_id, match.remaining_after)
                logger.info(
                    "FIFO match",
                    extra={
                        "asset": asset,
                        "lot_id": match.lot_id,
                        "matched_quantity": match.matched_quantity,
                        "entry_price": round(match.entry_price, 4),
                        "exit_price": round(exit_price, 4),
                        "pnl": round_to_two(match.realized_pnl),
                    },
                )

            trade_id = await self.store.insert_sell(
                account_id,
                asset,
                sell_quantity,
                result.weighted_avg_entry_price,
                amount_usd,
                round_to_two(result.realized_pnl),
                timestamp,
            )

        anomaly = None
        if result.unmatched_quantity > 0:
            anomaly = MatchingAnomaly(
                account_id=account_id,
                asset=asset,
                sell_quantity=sell_quantity,
                unmatched_quantity=result.unmatched_quantity,
            )
            logger.warning(
                f"Sold {result.unmatched_quantity} {asset} without matching buy positions (short selling)",
                extra={"trade_id": trade_id, "asset": asset, "unmatched": result.unmatched_quantity},
            )

        logger.info(
            "SELL stored",
            extra={
                "trade_id": trade_id,
                "asset": asset,
                "quantity": sell_quantity,
                "avg_entry_price": round(result.weighted_avg_entry_price, 4),
                "exit_price": round(exit_price, 4),
                "realized_pnl": round_to_two(result.realized_pnl),
            },
        )

        return SellResult(
            trade_id=trade_id,
            asset=asset,
            quantity=sell_quantity,
            exit_price=exit_price,
            amount_usd=amount_usd,
            realized_pnl=round_to_two(result.realized_pnl),
            weighted_avg_entry_price=result.weighted_avg_entry_price,
            matches=result.matches,
            anomaly=anomaly,
        )
