"""Build the portfolio context the agent decides on."""
import asyncio
import logging
from typing import Optional

from advisor.prompts import POSITION_LINE, SYSTEM_PROMPT
from execution.chain_client import ChainClient, fetch_portfolio_balances
from execution.tokens import TOKEN_LIST, USDC_SYMBOL
from feeds.market_prices import MarketPriceFeed, format_market_overview
from ledger.positions import PositionAggregator, calculate_positions_pnl
from shared.schemas import AgentContext, PositionWithPnL, StrategyConfig

logger = logging.getLogger(__name__)


def usdc_position(usdc_value: float, raw_balance: str) -> PositionWithPnL:
    """Cash leg of the portfolio, valued 1:1."""
    return PositionWithPnL(
        symbol=USDC_SYMBOL,
        balance=f"{usdc_value:.6f}",
        raw_balance=raw_balance,
        quantity=usdc_value,
        avg_entry_price=1.0,
        current_price=1.0,
        total_invested=usdc_value,
        current_value=usdc_value,
        price=1.0,
        usd_value=usdc_value,
        pnl_usd=0.0,
        pnl_percent=0.0,
    )


def render_system_prompt(context: AgentContext, strategy: StrategyConfig) -> str:
    open_positions = [p for p in context.positions_with_pnl if p.symbol != USDC_SYMBOL]
    positions = "\n".join(
        POSITION_LINE.format(**p.model_dump()) for p in open_positions
    ) or "None"
    assets = ", ".join(sorted({t.symbol for t in TOKEN_LIST if t.symbol != USDC_SYMBOL}))
    risk = strategy.risk_params
    return SYSTEM_PROMPT.format(
        total_usd=context.total_usd,
        pnl_usd=context.total_pnl,
        pnl_percent=context.pnl_percent,
        positions=positions,
        usdc_value=context.usdc_value,
        market_overview=format_market_overview(context.market_prices),
        assets=assets,
        overview=strategy.overview,
        step1_rules=strategy.step1_rules,
        step2_rules=strategy.step2_rules,
        step3_rules=strategy.step3_rules,
        profit_target=risk.profit_target,
        stop_loss=risk.stop_loss,
        position_size=risk.position_size,
        max_positions=risk.max_positions,
    )


async def build_agent_context(
    account_id: str,
    chain: ChainClient,
    price_feed: MarketPriceFeed,
    aggregator: PositionAggregator,
    strategy: Optional[StrategyConfig] = None,
) -> AgentContext:
    """Balances, live prices and ledger positions, marked to market."""
    balances, market_prices, current_positions = await asyncio.gather(
        fetch_portfolio_balances(chain, account_id),
        price_feed.get_prices(),
        aggregator.get_open_positions(account_id),
    )
    if not balances:
        logger.warning(
            "No on-chain balances found, continuing with empty portfolio",
            extra={"account_id": account_id},
        )

    positions_with_pnl, trading_value, total_pnl = calculate_positions_pnl(
        current_positions, market_prices, balances
    )

    usdc_balance = next((b for b in balances if b.symbol == USDC_SYMBOL), None)
    usdc_value = float(usdc_balance.balance_formatted) if usdc_balance else 0.0
    if usdc_balance and usdc_value > 0:
        positions_with_pnl.append(usdc_position(usdc_value, usdc_balance.balance))

    total_invested = sum(p.total_invested for p in current_positions)
    pnl_percent = total_pnl / total_invested * 100 if total_invested > 0 else 0.0

    context = AgentContext(
        account_id=account_id,
        total_usd=trading_value + usdc_value,
        total_pnl=total_pnl,
        pnl_percent=pnl_percent,
        positions_with_pnl=positions_with_pnl,
        current_positions=current_positions,
        balances=balances,
        market_prices=market_prices,
        trading_value=trading_value,
        usdc_value=usdc_value,
    )
    context.system_prompt = render_system_prompt(context, strategy or StrategyConfig())
    return context
