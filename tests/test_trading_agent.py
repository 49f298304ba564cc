"""Tests for advisor.trading_agent."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from advisor.trading_agent import TradingAgent, build_quote, parse_decision
from execution.tokens import token_by_symbol
from helpers import ACCOUNT, mcr, price
from shared.schemas import AgentContext, TokenBalance, TradeAction

BTC = token_by_symbol("BTC")
USDC = token_by_symbol("USDC")


def _context(usdc=500.0, btc_held=None):
    balances = []
    if btc_held is not None:
        balances.append(TokenBalance(
            asset_id=BTC.asset_id, symbol="BTC", balance="0", decimals=8,
            balance_formatted=f"{btc_held:.6f}",
        ))
    return AgentContext(
        account_id=ACCOUNT,
        total_usd=usdc,
        total_pnl=0.0,
        pnl_percent=0.0,
        balances=balances,
        market_prices=[price("BTCUSDT", 50000.0)],
        usdc_value=usdc,
        system_prompt="You are a trading agent.",
    )


def _mock_client(response="", thinking="", side_effect=None):
    client = MagicMock()
    client.chat_async = AsyncMock(
        return_value=mcr(response=response, thinking=thinking), side_effect=side_effect
    )
    return client


# --- parse_decision ---

def test_parse_decision_takes_last_action_object():
    text = (
        'Considering {"action": "SELL"} first...\n'
        '```json\n{"action": "BUY", "asset": "BTC", "amount": 100}\n```'
    )
    assert parse_decision(text) == {"action": "BUY", "asset": "BTC", "amount": 100}


def test_parse_decision_ignores_objects_without_action():
    assert parse_decision('{"asset": "BTC"}') is None
    assert parse_decision("no json here") is None
    assert parse_decision("") is None


# --- build_quote ---

def test_buy_quote_priced_at_market():
    quote = build_quote(TradeAction.BUY, "BTC", 100, _context())
    assert quote.origin_asset == USDC.asset_id
    assert quote.destination_asset == BTC.asset_id
    assert quote.amount_in_formatted == "100.000000"
    assert quote.amount_in == "100000000"
    assert quote.amount_out_formatted == "0.00200000"
    assert quote.amount_out == "200000"


def test_buy_quote_capped_at_usdc():
    quote = build_quote(TradeAction.BUY, "BTC", 900, _context(usdc=250.0))
    assert quote.amount_in_formatted == "250.000000"


def test_sell_quote_capped_at_holdings():
    quote = build_quote(TradeAction.SELL, "BTC", 1.0, _context(btc_held=0.01))
    assert quote.origin_asset == BTC.asset_id
    assert quote.destination_asset == USDC.asset_id
    assert quote.amount_in_formatted == "0.01000000"
    assert quote.amount_out_formatted == "500.000000"


def test_unquotable_decisions():
    assert build_quote(TradeAction.SELL, "BTC", 1.0, _context()) is None
    assert build_quote(TradeAction.BUY, "SOL", 10, _context()) is None
    assert build_quote(TradeAction.BUY, "DOGE", 10, _context()) is None
    assert build_quote(TradeAction.BUY, "USDC", 10, _context()) is None
    assert build_quote(TradeAction.BUY, "BTC", 10, _context(usdc=0.0)) is None


# --- TradingAgent.decide ---

@pytest.mark.asyncio
async def test_decide_buy():
    client = _mock_client(
        response='BTC is breaking out.\n```json\n{"action": "BUY", "asset": "BTC", '
                 '"amount": 100, "reasoning": "Breakout"}\n```',
    )
    decision = await TradingAgent(client, "test-model").decide(_context())

    assert decision.action == TradeAction.BUY
    assert decision.quote.amount_in_formatted == "100.000000"
    assert decision.model == "test-model"
    assert "Breakout" in decision.content
    messages = client.chat_async.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "You are a trading agent."}


@pytest.mark.asyncio
async def test_decide_hold():
    client = _mock_client(response='{"action": "HOLD", "reasoning": "Choppy market"}')
    decision = await TradingAgent(client, "m").decide(_context())
    assert decision.action == TradeAction.HOLD
    assert decision.quote is None


@pytest.mark.asyncio
async def test_decide_reads_thinking_when_response_empty():
    client = _mock_client(thinking='Decision: {"action": "BUY", "asset": "BTC", "amount": 50}')
    decision = await TradingAgent(client, "m").decide(_context())
    assert decision.action == TradeAction.BUY
    assert decision.quote.amount_in_formatted == "50.000000"


@pytest.mark.asyncio
async def test_decide_unquotable_becomes_hold():
    client = _mock_client(response='{"action": "SELL", "asset": "BTC", "amount": 1}')
    decision = await TradingAgent(client, "m").decide(_context())
    assert decision.action == TradeAction.HOLD
    assert decision.quote is None


@pytest.mark.asyncio
async def test_decide_unknown_action_is_hold():
    client = _mock_client(response='{"action": "YOLO", "asset": "BTC", "amount": 1}')
    decision = await TradingAgent(client, "m").decide(_context())
    assert decision.action == TradeAction.HOLD


@pytest.mark.asyncio
async def test_decide_llm_error_is_hold():
    client = _mock_client(side_effect=Exception("LLM timeout"))
    decision = await TradingAgent(client, "m").decide(_context())
    assert decision.action == TradeAction.HOLD
    assert decision.content == "Error: LLM timeout"
    assert decision.quote is None
