"""Chain access: balance reads and swap execution.

Live signing is out of scope for this repo; `PaperChainClient` simulates an
intents account so the full cycle runs in paper mode.
"""
import asyncio
import logging
import uuid
from typing import Optional, Protocol

from execution.tokens import TOKEN_LIST, Token, from_raw, to_raw, token_by_symbol
from shared.schemas import Quote, TokenBalance, TransferReceipt

logger = logging.getLogger(__name__)


class InsufficientBalance(ValueError):
    """The account cannot cover the quote's input amount."""


class ChainClient(Protocol):
    async def get_balance(self, account_id: str, asset_id: str) -> int:
        """Raw (base-unit) balance of one asset."""
        ...

    async def transfer(self, quote: Quote) -> TransferReceipt:
        """Execute the swap described by `quote`."""
        ...


class PaperChainClient:
    """Simulated account that fills every quote at its quoted amounts."""

    def __init__(self, account_id: str, initial_balances: Optional[dict[str, int]] = None):
        self.account_id = account_id
        self._balances: dict[str, int] = dict(initial_balances or {})

    @classmethod
    def with_usdc(cls, account_id: str, amount_usd: float) -> "PaperChainClient":
        usdc = token_by_symbol("USDC")
        return cls(account_id, {usdc.asset_id: to_raw(amount_usd, usdc.decimals)})

    async def get_balance(self, account_id: str, asset_id: str) -> int:
        if account_id != self.account_id:
            return 0
        return self._balances.get(asset_id, 0)

    async def transfer(self, quote: Quote) -> TransferReceipt:
        amount_in = int(quote.amount_in)
        amount_out = int(quote.amount_out)
        available = self._balances.get(quote.origin_asset, 0)
        if amount_in <= 0 or amount_out <= 0:
            raise ValueError("Quote amounts must be positive")
        if available < amount_in:
            raise InsufficientBalance(
                f"Balance {available} of {quote.origin_asset} below quoted input {amount_in}"
            )

        self._balances[quote.origin_asset] = available - amount_in
        self._balances[quote.destination_asset] = (
            self._balances.get(quote.destination_asset, 0) + amount_out
        )
        tx_hash = f"paper-{uuid.uuid4().hex[:12]}"
        logger.info(
            "Paper swap executed",
            extra={
                "tx_hash": tx_hash,
                "origin": quote.origin_asset,
                "destination": quote.destination_asset,
                "amount_in": quote.amount_in_formatted,
                "amount_out": quote.amount_out_formatted,
            },
        )
        return TransferReceipt(tx_hash=tx_hash, is_paper=True)


async def _token_balance(
    chain: ChainClient, account_id: str, token: Token
) -> Optional[TokenBalance]:
    try:
        raw = await chain.get_balance(account_id, token.asset_id)
    except Exception as e:
        logger.warning(f"Failed to fetch {token.symbol} balance: {e}")
        return None
    if not raw:
        return None
    return TokenBalance(
        asset_id=token.asset_id,
        symbol=token.symbol,
        balance=str(raw),
        decimals=token.decimals,
        balance_formatted=f"{from_raw(raw, token.decimals):.6f}",
    )


async def fetch_portfolio_balances(
    chain: ChainClient, account_id: str, tokens: Optional[list[Token]] = None
) -> list[TokenBalance]:
    """Non-zero balances of every listed token. Tokens that fail to load are skipped."""
    results = await asyncio.gather(
        *(_token_balance(chain, account_id, t) for t in (tokens or TOKEN_LIST))
    )
    return [b for b in results if b is not None]
