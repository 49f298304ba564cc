"""One trading cycle: context -> decision -> swap -> ledger -> snapshot."""
import asyncio
import logging
from typing import Optional, Protocol

import aiosqlite

from advisor.context import build_agent_context
from execution.chain_client import ChainClient
from execution.trade_recorder import TradeRecorder
from feeds.market_prices import MarketPriceFeed
from ledger.positions import PositionAggregator
from ledger.snapshots import SnapshotRecorder
from shared.schemas import AgentContext, AgentDecision, CycleResult, StrategyConfig
from shared.utils import round_to_two
from storage.db import LedgerStore
from storage.errors import LedgerError

logger = logging.getLogger(__name__)


class DecisionAgent(Protocol):
    async def decide(self, context: AgentContext) -> AgentDecision:
        ...


class TradingCycle:
    """Runs cycles one at a time.

    Trade execution and trade recording failures propagate so the caller
    marks the cycle failed; snapshot failures are logged and absorbed.
    """

    def __init__(
        self,
        store: LedgerStore,
        chain: ChainClient,
        price_feed: MarketPriceFeed,
        agent: DecisionAgent,
        aggregator: PositionAggregator,
        recorder: TradeRecorder,
        snapshots: SnapshotRecorder,
        strategy: Optional[StrategyConfig] = None,
        settlement_delay: float = 20.0,
    ):
        self.store = store
        self.chain = chain
        self.price_feed = price_feed
        self.agent = agent
        self.aggregator = aggregator
        self.recorder = recorder
        self.snapshots = snapshots
        self.strategy = strategy
        self.settlement_delay = settlement_delay
        self._lock = asyncio.Lock()

    async def run(self, account_id: str) -> CycleResult:
        async with self._lock:
            return await self._run(account_id)

    async def _context(self, account_id: str) -> AgentContext:
        return await build_agent_context(
            account_id, self.chain, self.price_feed, self.aggregator, self.strategy
        )

    async def _run(self, account_id: str) -> CycleResult:
        await self.store.ensure_schema()

        context = await self._context(account_id)
        decision = await self.agent.decide(context)
        logger.info(
            "Trading agent data",
            extra={
                "account_id": account_id,
                "total_usd": round_to_two(context.total_usd),
                "trading_value": round_to_two(context.trading_value),
                "usdc_value": round_to_two(context.usdc_value),
                "pnl_usd": round_to_two(context.total_pnl),
                "pnl_percent": round_to_two(context.pnl_percent),
                "positions": len(context.current_positions),
                "action": decision.action.value,
            },
        )

        result = CycleResult(account_id=account_id, content=decision.content, quote=decision.quote)
        snapshot_context = context

        if decision.quote is not None:
            receipt = await self.chain.transfer(decision.quote)
            result.tx_hash = receipt.tx_hash
            logger.info("Trade executed", extra={"tx_hash": receipt.tx_hash})
            # balances lag the swap on chain
            await asyncio.sleep(self.settlement_delay)
            result.trade_id = await self.recorder.record(account_id, decision.quote)
            snapshot_context = await self._context(account_id)

        previous_usd = await self._previous_total(account_id, context.total_usd)
        result.snapshot_id = await self.snapshots.record_snapshot(
            account_id,
            snapshot_context.positions_with_pnl,
            snapshot_context.total_usd,
            previous_usd,
            decision.content,
        )
        result.total_usd = snapshot_context.total_usd
        return result

    async def _previous_total(self, account_id: str, fallback: float) -> float:
        """Total of the latest stored snapshot, else the pre-trade total."""
        try:
            latest = await self.store.latest_snapshot(account_id)
        except (LedgerError, aiosqlite.Error) as e:
            logger.warning(f"Could not read previous snapshot: {e}")
            return fallback
        return latest.total_usd_value if latest else fallback
