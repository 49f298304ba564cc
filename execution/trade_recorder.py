"""Turn an executed swap quote into ledger rows."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from execution.tokens import USDC_SYMBOL, symbol_for
from ledger.lot_matcher import LotMatcher
from shared.schemas import Quote, TradeType

logger = logging.getLogger(__name__)


@dataclass
class SwapFill:
    """Ledger view of a swap: every trade is against USDC."""
    type: TradeType
    asset: str
    quantity: float
    price: float
    amount_usd: float


def derive_fill(quote: Quote) -> SwapFill:
    """USDC -> token is a BUY of the token; token -> USDC is a SELL of it."""
    origin = symbol_for(quote.origin_asset)
    destination = symbol_for(quote.destination_asset)
    amount_in = float(quote.amount_in_formatted)
    amount_out = float(quote.amount_out_formatted)
    if amount_in <= 0 or amount_out <= 0:
        raise ValueError(
            f"Quote amounts must be positive (in={amount_in}, out={amount_out})"
        )

    if origin == USDC_SYMBOL:
        return SwapFill(
            type=TradeType.BUY,
            asset=destination,
            quantity=amount_out,
            price=amount_in / amount_out,
            amount_usd=amount_in,
        )
    return SwapFill(
        type=TradeType.SELL,
        asset=origin,
        quantity=amount_in,
        price=amount_out / amount_in,
        amount_usd=amount_out,
    )


class TradeRecorder:
    """Writes executed swaps to the ledger. Errors propagate to the cycle."""

    def __init__(self, matcher: LotMatcher):
        self.matcher = matcher

    async def record(
        self,
        account_id: str,
        quote: Quote,
        timestamp: Optional[datetime] = None,
    ) -> Optional[int]:
        fill = derive_fill(quote)
        await self.matcher.store.ensure_schema()

        if fill.type == TradeType.BUY:
            return await self.matcher.record_buy(
                account_id, fill.asset, fill.quantity, fill.price, fill.amount_usd, timestamp
            )

        result = await self.matcher.match_and_record_sell(
            account_id, fill.asset, fill.quantity, fill.price, fill.amount_usd, timestamp
        )
        return result.trade_id if result else None
