"""Tests for execution.trading_cycle."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from execution.chain_client import InsufficientBalance, PaperChainClient
from execution.tokens import token_by_symbol
from execution.trade_recorder import TradeRecorder
from execution.trading_cycle import TradingCycle
from helpers import ACCOUNT, make_quote, price, price_feed
from ledger.lot_matcher import LotMatcher
from ledger.positions import PositionAggregator
from ledger.snapshots import SnapshotRecorder
from shared.schemas import AgentDecision, TradeAction, TradeType
from storage.db import NullLedgerStore
from storage.errors import SchemaError

BUY_BTC = AgentDecision(
    content='{"action": "BUY", "asset": "BTC", "amount": 100, "reasoning": "Breakout"}',
    action=TradeAction.BUY,
    quote=make_quote("USDC", "BTC", "100", "0.002"),
)
HOLD = AgentDecision(content='{"action": "HOLD", "reasoning": "Wait"}')


def _agent(*decisions):
    agent = MagicMock()
    agent.decide = AsyncMock(side_effect=list(decisions))
    return agent


def _cycle(store, agent, chain=None, usdc=1000.0):
    return TradingCycle(
        store=store,
        chain=chain or PaperChainClient.with_usdc(ACCOUNT, usdc),
        price_feed=price_feed(price("BTCUSDT", 50000.0)),
        agent=agent,
        aggregator=PositionAggregator(store),
        recorder=TradeRecorder(LotMatcher(store)),
        snapshots=SnapshotRecorder(store),
        settlement_delay=0,
    )


@pytest.mark.asyncio
async def test_hold_cycle_records_snapshot_only(db):
    result = await _cycle(db, _agent(HOLD)).run(ACCOUNT)

    assert result.trade_id is None
    assert result.tx_hash is None
    assert result.snapshot_id is not None
    assert result.total_usd == 1000.0
    snapshot = await db.latest_snapshot(ACCOUNT)
    assert snapshot.total_usd_value == 1000.0
    assert snapshot.snapshot_data.reasoning == HOLD.content
    assert await db.query_trades(ACCOUNT) == []


@pytest.mark.asyncio
async def test_buy_cycle_records_trade_and_snapshot(db):
    result = await _cycle(db, _agent(BUY_BTC)).run(ACCOUNT)

    assert result.tx_hash.startswith("paper-")
    trade = await db.get_trade(result.trade_id)
    assert trade.type == TradeType.BUY
    assert trade.asset == "BTC"
    assert trade.quantity == 0.002
    assert trade.entry_price == 50000.0

    snapshot = await db.latest_snapshot(ACCOUNT)
    assert snapshot.id == result.snapshot_id
    assert [p.symbol for p in snapshot.snapshot_data.positions] == ["BTC", "USDC"]
    assert snapshot.total_usd_value == pytest.approx(1000.0)
    assert result.content == BUY_BTC.content


@pytest.mark.asyncio
async def test_snapshot_delta_uses_previous_snapshot(db):
    cycle = _cycle(db, _agent(HOLD, HOLD))
    await cycle.run(ACCOUNT)
    cycle.chain._balances[token_by_symbol("USDC").asset_id] += 100_000_000
    await cycle.run(ACCOUNT)

    latest = await db.latest_snapshot(ACCOUNT)
    assert latest.total_usd_value == 1100.0
    assert latest.pnl_usd == 100.0
    assert latest.pnl_percent == 10.0


@pytest.mark.asyncio
async def test_snapshot_failure_does_not_fail_cycle(db):
    db.insert_snapshot = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
    result = await _cycle(db, _agent(BUY_BTC)).run(ACCOUNT)
    assert result.trade_id is not None
    assert result.snapshot_id is None


@pytest.mark.asyncio
async def test_trade_record_failure_propagates(db):
    db.insert_buy = AsyncMock(side_effect=aiosqlite.OperationalError("attempt to write a readonly database"))
    with pytest.raises(aiosqlite.OperationalError):
        await _cycle(db, _agent(BUY_BTC)).run(ACCOUNT)
    assert await db.latest_snapshot(ACCOUNT) is None


@pytest.mark.asyncio
async def test_failed_swap_propagates_without_ledger_write(db):
    with pytest.raises(InsufficientBalance):
        await _cycle(db, _agent(BUY_BTC), usdc=10.0).run(ACCOUNT)
    assert await db.query_trades(ACCOUNT) == []


@pytest.mark.asyncio
async def test_schema_error_aborts_before_deciding():
    store = NullLedgerStore()
    store.ensure_schema = AsyncMock(side_effect=SchemaError("cannot create tables"))
    agent = _agent(HOLD)
    with pytest.raises(SchemaError):
        await _cycle(store, agent).run(ACCOUNT)
    agent.decide.assert_not_awaited()


@pytest.mark.asyncio
async def test_cycle_runs_without_store():
    result = await _cycle(NullLedgerStore(), _agent(BUY_BTC)).run(ACCOUNT)
    assert result.tx_hash is not None
    assert result.trade_id is None
    assert result.snapshot_id is None


@pytest.mark.asyncio
async def test_cycles_do_not_overlap(db):
    running = 0
    peak = 0

    async def decide(context):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return HOLD

    agent = MagicMock()
    agent.decide = decide
    cycle = _cycle(db, agent)
    await asyncio.gather(cycle.run(ACCOUNT), cycle.run(ACCOUNT))
    assert peak == 1
