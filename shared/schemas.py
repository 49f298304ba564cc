"""Pydantic models for all data flowing through the agent and the ledger."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Model exchanged with camelCase JSON (market API, quotes, dashboard)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Market / chain
# ---------------------------------------------------------------------------

class MarketPrice(CamelModel):
    """Ticker entry from the market overview API."""
    symbol: str
    price: float
    price_change: float = 0.0
    price_change_percent: float = 0.0
    volume: float = 0.0
    quote_volume: float = 0.0
    high: float = 0.0
    low: float = 0.0
    open_price: float = 0.0
    trades: int = 0


class TokenBalance(BaseModel):
    """On-chain balance of one token, raw and formatted."""
    asset_id: str
    symbol: str
    balance: str
    decimals: int
    balance_formatted: str


class Quote(CamelModel):
    """Swap quote: sell `amount_in` of origin asset for `amount_out` of destination."""
    origin_asset: str
    destination_asset: str
    amount_in: str
    amount_in_formatted: str
    amount_out: str
    amount_out_formatted: str
    min_amount_out: str = ""
    deposit_address: str = ""
    deadline: str = ""
    time_estimate: int = 0
    signature: str = ""
    timestamp: str = ""


class TransferReceipt(BaseModel):
    tx_hash: str
    is_paper: bool = True
    timestamp: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeRecord(BaseModel):
    """Persisted trade row. BUY rows double as FIFO lots."""
    id: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)
    account_id: str
    asset: str
    type: TradeType
    quantity: float
    entry_price: float
    amount_usd: float
    remaining_quantity: float = 0.0
    realized_pnl: float = 0.0


class LotMatch(BaseModel):
    """One FIFO step: how much of a BUY lot a SELL consumed."""
    lot_id: int
    entry_price: float
    matched_quantity: float
    remaining_after: float
    realized_pnl: float


class FifoResult(BaseModel):
    matches: list[LotMatch] = Field(default_factory=list)
    realized_pnl: float = 0.0
    matched_quantity: float = 0.0
    weighted_avg_entry_price: float = 0.0
    unmatched_quantity: float = 0.0


class MatchingAnomaly(BaseModel):
    """A SELL larger than the open lots of its asset (short sell)."""
    account_id: str
    asset: str
    sell_quantity: float
    unmatched_quantity: float


class SellResult(BaseModel):
    trade_id: Optional[int] = None
    asset: str
    quantity: float
    exit_price: float
    amount_usd: float
    realized_pnl: float
    weighted_avg_entry_price: float
    matches: list[LotMatch] = Field(default_factory=list)
    anomaly: Optional[MatchingAnomaly] = None


class CurrentPosition(BaseModel):
    """Open position aggregated from unconsumed BUY lots."""
    asset: str
    quantity: float
    avg_entry_price: float
    total_invested: float


class PositionWithPnL(BaseModel):
    """Open position joined with a live price and on-chain balance."""
    symbol: str
    balance: str
    raw_balance: str = "0"
    quantity: float
    avg_entry_price: float
    current_price: float
    total_invested: float
    current_value: float
    price: float
    usd_value: float
    pnl_usd: float
    pnl_percent: float


class SnapshotData(BaseModel):
    """JSON payload stored with every portfolio snapshot."""
    positions: list[PositionWithPnL] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    reasoning: Optional[str] = None
    raw_ai_response: Optional[str] = None
    market_analysis: Optional[str] = None


class PortfolioSnapshot(BaseModel):
    id: Optional[int] = None
    account_id: str
    created_at: datetime = Field(default_factory=utcnow)
    snapshot_data: SnapshotData
    total_usd_value: float
    pnl_usd: float = 0.0
    pnl_percent: float = 0.0


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

class DashboardTrade(CamelModel):
    id: int
    timestamp: datetime
    type: TradeType
    asset: str
    quantity: float
    price: float
    amount: float
    pnl: float
    pnl_percent: float
    portfolio_value: float
    remaining_quantity: float
    realized_pnl: float


class AssetAllocation(CamelModel):
    symbol: str
    value: float
    percentage: float
    change: float = 0.0


class ChartPoint(CamelModel):
    time_label: str = Field(alias="date")
    value: float
    timestamp: datetime
    pnl: float = 0.0


class DashboardData(CamelModel):
    total_value: float = 0.0
    starting_value: float = 0.0
    goal_value: float = 0.0
    accrued_yield: float = 0.0
    yield_percent: float = 0.0
    trades: list[DashboardTrade] = Field(default_factory=list)
    asset_distribution: list[AssetAllocation] = Field(default_factory=list)
    stats_chart: list[ChartPoint] = Field(default_factory=list)
    last_reasoning: str = "No data available"
    request_count: int = 0
    last_update: Optional[datetime] = None


class TradeDetail(CamelModel):
    id: int
    timestamp: datetime
    asset: str
    type: TradeType
    quantity: float
    price: float
    amount: float
    pnl: float
    reasoning: str
    market_conditions: Optional[str] = None
    portfolio_value: float = 0.0


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class RiskParams(BaseModel):
    profit_target: float = 2.0
    stop_loss: float = -1.5
    max_positions: int = 4
    position_size: str = "5-15% of USDC"


class StrategyConfig(BaseModel):
    """Trading strategy rendered into the system prompt."""
    overview: str = (
        "Wall Street 3-Step: Data-driven day trading with clear profit/loss "
        "targets and risk management"
    )
    risk_params: RiskParams = Field(default_factory=RiskParams)
    step1_rules: str = (
        "Risk targets: SELL at +2% profit OR -1.5% loss. Close losing positions "
        "faster than winners (cut losses, let profits run). Don't close positions "
        "with raw balance below 1000."
    )
    step2_rules: str = (
        "Screen for high-probability setups: Price momentum >3% with volume "
        "confirmation, Fear/Greed extremes, Order book imbalances. Only trade "
        "clear directional moves."
    )
    step3_rules: str = (
        "Dynamic sizing: 5-15% per trade (scales with account). Minimum $8 "
        "positions. Max 3-4 open positions at once."
    )


class AgentContext(BaseModel):
    """Portfolio view handed to the decision agent."""
    account_id: str
    total_usd: float
    total_pnl: float
    pnl_percent: float
    positions_with_pnl: list[PositionWithPnL] = Field(default_factory=list)
    current_positions: list[CurrentPosition] = Field(default_factory=list)
    balances: list[TokenBalance] = Field(default_factory=list)
    market_prices: list[MarketPrice] = Field(default_factory=list)
    trading_value: float = 0.0
    usdc_value: float = 0.0
    system_prompt: str = ""


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class AgentDecision(BaseModel):
    """Output of the decision agent."""
    content: str
    action: TradeAction = TradeAction.HOLD
    quote: Optional[Quote] = None
    model: str = ""
    latency_ms: float = 0.0


class CycleResult(BaseModel):
    """Outcome of one trading cycle."""
    account_id: str
    content: str
    quote: Optional[Quote] = None
    tx_hash: Optional[str] = None
    trade_id: Optional[int] = None
    snapshot_id: Optional[int] = None
    total_usd: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)
