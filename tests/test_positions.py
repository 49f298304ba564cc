"""Tests for ledger.positions."""
import pytest

from helpers import ACCOUNT, at, lot, price
from ledger.lot_matcher import LotMatcher
from ledger.positions import PositionAggregator, aggregate_positions, calculate_positions_pnl
from shared.schemas import CurrentPosition, TokenBalance


def test_aggregate_weighted_average():
    positions = aggregate_positions([
        lot(1, 2, 100.0),
        lot(2, 1, 130.0, minutes=1),
    ])
    assert len(positions) == 1
    assert positions[0].asset == "BTC"
    assert positions[0].quantity == 3
    assert positions[0].total_invested == 330.0
    assert positions[0].avg_entry_price == pytest.approx(110.0)


def test_aggregate_uses_remaining_quantity_only():
    positions = aggregate_positions([lot(1, 10, 100.0, remaining=4)])
    assert positions[0].quantity == 4
    assert positions[0].total_invested == 400.0


def test_aggregate_drops_dust_and_sorts_by_invested():
    positions = aggregate_positions([
        lot(1, 1, 10.0, asset="ARB"),
        lot(2, 1, 3000.0, asset="ETH"),
        lot(3, 0.00005, 100000.0, asset="BTC"),
        lot(4, 10, 150.0, asset="SOL"),
    ])
    assert [p.asset for p in positions] == ["ETH", "SOL", "ARB"]


def test_aggregate_empty():
    assert aggregate_positions([]) == []


def test_positions_pnl_marked_to_market():
    positions = [
        CurrentPosition(asset="BTC", quantity=2, avg_entry_price=100.0, total_invested=200.0),
        CurrentPosition(asset="NEAR", quantity=10, avg_entry_price=5.0, total_invested=50.0),
    ]
    balances = [
        TokenBalance(asset_id="nep141:wrap.near", symbol="wNEAR", balance="10" + "0" * 24,
                     decimals=24, balance_formatted="10.000000"),
    ]
    result, total_value, total_pnl = calculate_positions_pnl(
        positions, [price("BTCUSDT", 150.0), price("NEARUSDT", 4.0)], balances
    )

    btc, near = result
    assert btc.current_value == 300.0
    assert btc.pnl_usd == 100.0
    assert btc.pnl_percent == pytest.approx(50.0)
    assert btc.raw_balance == "0"
    assert near.pnl_percent == pytest.approx(-20.0)
    assert near.raw_balance == "1" + "0" * 25
    assert total_value == pytest.approx(340.0)
    assert total_pnl == pytest.approx(90.0)


def test_positions_pnl_without_price_values_zero():
    positions = [CurrentPosition(asset="ASTER", quantity=5, avg_entry_price=2.0, total_invested=10.0)]
    result, total_value, total_pnl = calculate_positions_pnl(positions, [])
    assert result[0].current_price == 0
    assert total_value == 0
    assert total_pnl == -10.0


def test_positions_pnl_zero_invested_is_safe():
    positions = [CurrentPosition(asset="BTC", quantity=1, avg_entry_price=0.0, total_invested=0.0)]
    result, _, _ = calculate_positions_pnl(positions, [price("BTCUSDT", 10.0)])
    assert result[0].pnl_percent == 0.0


@pytest.mark.asyncio
async def test_aggregator_reads_ledger(db):
    matcher = LotMatcher(db)
    await matcher.record_buy(ACCOUNT, "BTC", 2, 100.0, 200.0, at(0))
    await matcher.record_buy(ACCOUNT, "ETH", 1, 3000.0, 3000.0, at(1))
    await matcher.match_and_record_sell(ACCOUNT, "BTC", 1, 120.0, 120.0, at(2))

    positions = await PositionAggregator(db).get_open_positions(ACCOUNT)
    assert [(p.asset, p.quantity) for p in positions] == [("ETH", 1), ("BTC", 1)]


@pytest.mark.asyncio
async def test_aggregator_fully_sold_asset_disappears(db):
    matcher = LotMatcher(db)
    await matcher.record_buy(ACCOUNT, "SOL", 3, 100.0, 300.0, at(0))
    await matcher.match_and_record_sell(ACCOUNT, "SOL", 3, 110.0, 330.0, at(1))
    assert await PositionAggregator(db).get_open_positions(ACCOUNT) == []
