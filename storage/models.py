"""SQLite table definitions."""

TRADES_TABLE = "trades"
SNAPSHOTS_TABLE = "portfolio_snapshots"

CREATE_TRADES_TABLE = """
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    account_id TEXT NOT NULL,
    asset TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('BUY', 'SELL')),
    quantity REAL NOT NULL,
    entry_price REAL NOT NULL,
    amount_usd REAL NOT NULL,
    remaining_quantity REAL NOT NULL DEFAULT 0 CHECK (remaining_quantity >= 0),
    realized_pnl REAL NOT NULL DEFAULT 0
);
"""

CREATE_SNAPSHOTS_TABLE = """
CREATE TABLE IF NOT EXISTS portfolio_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    account_id TEXT NOT NULL,
    snapshot_data TEXT NOT NULL,
    total_usd_value REAL NOT NULL,
    pnl_usd REAL NOT NULL DEFAULT 0,
    pnl_percent REAL NOT NULL DEFAULT 0
);
"""

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_trades_account_id ON trades(account_id)",
    "CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades(timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_trades_asset_type ON trades(asset, type)",
    "CREATE INDEX IF NOT EXISTS idx_trades_open_lots "
    "ON trades(account_id, asset, timestamp) WHERE remaining_quantity > 0",
    "CREATE INDEX IF NOT EXISTS idx_portfolio_snapshots_account_id "
    "ON portfolio_snapshots(account_id)",
    "CREATE INDEX IF NOT EXISTS idx_portfolio_snapshots_created_at "
    "ON portfolio_snapshots(created_at DESC)",
]

TRADE_COLUMNS = (
    "id, timestamp, account_id, asset, type, quantity, entry_price, amount_usd, "
    "COALESCE(remaining_quantity, 0) AS remaining_quantity, "
    "COALESCE(realized_pnl, 0) AS realized_pnl"
)

SNAPSHOT_COLUMNS = (
    "id, created_at, account_id, snapshot_data, total_usd_value, pnl_usd, pnl_percent"
)
