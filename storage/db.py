"""Ledger store: trades and portfolio snapshots in SQLite via aiosqlite."""
import aiosqlite
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import ValidationError

from shared.schemas import (
    PortfolioSnapshot,
    SnapshotData,
    TradeRecord,
    utcnow,
)
from shared.utils import normalize_asset
from storage.errors import SchemaError, StoreUnavailable
from storage.models import (
    CREATE_INDEXES,
    CREATE_SNAPSHOTS_TABLE,
    CREATE_TRADES_TABLE,
    SNAPSHOT_COLUMNS,
    SNAPSHOTS_TABLE,
    TRADE_COLUMNS,
    TRADES_TABLE,
)

logger = logging.getLogger(__name__)

# Column precision: quantities/prices keep 8 decimals, USD amounts 2
QUANTITY_DECIMALS = 8
USD_DECIMALS = 2


def to_db_timestamp(value: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with fixed microsecond precision, so text order is time order."""
    value = value or utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _qty(value: float) -> float:
    return round(max(0.0, float(value)), QUANTITY_DECIMALS)


class Database:
    """Async SQLite ledger of trades (FIFO lots) and portfolio snapshots."""

    available = True

    def __init__(self, db_path: str = "data/ledger.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._schema_ready = False
        # One connection is shared, so every statement runs under this lock and
        # an open transaction holds it until commit or rollback.
        self._lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None

    async def init(self):
        """Open the connection and make sure the ledger tables exist."""
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
        except (aiosqlite.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot open ledger database {self.db_path}: {e}") from e
        await self.ensure_schema()
        logger.info("Ledger database initialized", extra={"path": self.db_path})

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            self._schema_ready = False

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreUnavailable("Ledger database not initialized")
        return self._db

    async def ensure_schema(self, force: bool = False):
        """Create the trade and snapshot tables and indexes if absent.

        Safe to call repeatedly: existing tables are never dropped or altered.
        """
        if self._schema_ready and not force:
            return
        try:
            async with self._access() as db:
                cursor = await db.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name IN (?, ?)",
                    (TRADES_TABLE, SNAPSHOTS_TABLE),
                )
                existing = {row[0] for row in await cursor.fetchall()}
                missing = sorted({TRADES_TABLE, SNAPSHOTS_TABLE} - existing)
                if missing:
                    logger.info("Ledger tables not found, creating", extra={"tables": missing})

                for statement in [CREATE_TRADES_TABLE, CREATE_SNAPSHOTS_TABLE, *CREATE_INDEXES]:
                    await db.execute(statement)
                await self._commit()
        except aiosqlite.Error as e:
            self._schema_ready = False
            raise SchemaError(f"Failed to ensure ledger tables: {e}") from e

        self._schema_ready = True
        if missing:
            logger.info("Ledger tables created", extra={"tables": missing})

    @asynccontextmanager
    async def transaction(self):
        """Group several writes into one atomic commit.

        Writes issued inside the block do not commit individually; any
        exception rolls the whole block back. Other tasks, readers included,
        wait until the block ends. A nested block in the same task joins the
        outer one.
        """
        if self._owns_transaction():
            yield self
            return
        async with self._lock:
            db = self._conn()
            await db.execute("BEGIN IMMEDIATE")
            self._tx_owner = asyncio.current_task()
            try:
                yield self
            except BaseException:
                await db.rollback()
                raise
            else:
                await db.commit()
            finally:
                self._tx_owner = None

    def _owns_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def _access(self):
        """The connection, once no other task has a transaction open on it."""
        if self._owns_transaction():
            yield self._conn()
            return
        async with self._lock:
            yield self._conn()

    async def _commit(self):
        if self._tx_owner is None:
            await self._conn().commit()

    async def _execute(self, query: str, params: tuple = ()) -> aiosqlite.Cursor:
        async with self._access() as db:
            cursor = await db.execute(query, params)
            await self._commit()
            return cursor

    async def _fetchall(self, query: str, params: tuple = ()) -> list[dict]:
        async with self._access() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        columns = [d[0] for d in cursor.description]
        return [dict(zip(columns, row)) for row in rows]

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[dict]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def insert_buy(
        self,
        account_id: str,
        asset: str,
        quantity: float,
        entry_price: float,
        amount_usd: float,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Append a BUY row; its whole quantity starts out open."""
        if quantity <= 0:
            raise ValueError(f"BUY quantity must be positive, got {quantity}")
        cursor = await self._execute(
            """INSERT INTO trades
               (timestamp, account_id, asset, type, quantity, entry_price,
                amount_usd, remaining_quantity, realized_pnl)
               VALUES (?, ?, ?, 'BUY', ?, ?, ?, ?, 0)""",
            (
                to_db_timestamp(timestamp), account_id, normalize_asset(asset),
                _qty(quantity), round(entry_price, QUANTITY_DECIMALS),
                round(amount_usd, USD_DECIMALS), _qty(quantity),
            ),
        )
        return cursor.lastrowid

    async def insert_sell(
        self,
        account_id: str,
        asset: str,
        quantity: float,
        entry_price: float,
        amount_usd: float,
        realized_pnl: float,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Append a SELL row. `entry_price` is the weighted entry of matched lots."""
        if quantity <= 0:
            raise ValueError(f"SELL quantity must be positive, got {quantity}")
        cursor = await self._execute(
            """INSERT INTO trades
               (timestamp, account_id, asset, type, quantity, entry_price,
                amount_usd, remaining_quantity, realized_pnl)
               VALUES (?, ?, ?, 'SELL', ?, ?, ?, 0, ?)""",
            (
                to_db_timestamp(timestamp), account_id, normalize_asset(asset),
                _qty(quantity), round(entry_price, QUANTITY_DECIMALS),
                round(amount_usd, USD_DECIMALS), round(realized_pnl, USD_DECIMALS),
            ),
        )
        return cursor.lastrowid

    async def update_remaining_quantity(self, buy_id: int, new_remaining: float):
        """Set the open quantity of a BUY lot (floored at 0)."""
        await self._execute(
            "UPDATE trades SET remaining_quantity = ? WHERE id = ? AND type = 'BUY'",
            (_qty(new_remaining), buy_id),
        )

    async def query_open_lots(
        self, account_id: str, asset: Optional[str] = None
    ) -> list[TradeRecord]:
        """Open BUY lots, oldest first (FIFO order)."""
        query = (
            f"SELECT {TRADE_COLUMNS} FROM trades "
            "WHERE account_id = ? AND type = 'BUY' AND remaining_quantity > 0"
        )
        params: tuple = (account_id,)
        if asset is not None:
            query += " AND asset = ?"
            params += (normalize_asset(asset),)
        query += " ORDER BY timestamp ASC, id ASC"
        rows = await self._fetchall(query, params)
        return [TradeRecord(**row) for row in rows]

    async def query_trades(self, account_id: str, limit: int = 100) -> list[TradeRecord]:
        """Most recent trades first."""
        rows = await self._fetchall(
            f"SELECT {TRADE_COLUMNS} FROM trades WHERE account_id = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (account_id, limit),
        )
        return [TradeRecord(**row) for row in rows]

    async def get_trade(self, trade_id: int) -> Optional[TradeRecord]:
        row = await self._fetchone(
            f"SELECT {TRADE_COLUMNS} FROM trades WHERE id = ?", (trade_id,)
        )
        return TradeRecord(**row) if row else None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def insert_snapshot(self, snapshot: PortfolioSnapshot) -> int:
        cursor = await self._execute(
            """INSERT INTO portfolio_snapshots
               (created_at, account_id, snapshot_data, total_usd_value,
                pnl_usd, pnl_percent)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                to_db_timestamp(snapshot.created_at),
                snapshot.account_id,
                snapshot.snapshot_data.model_dump_json(),
                round(snapshot.total_usd_value, USD_DECIMALS),
                round(snapshot.pnl_usd, USD_DECIMALS),
                round(snapshot.pnl_percent, 4),
            ),
        )
        return cursor.lastrowid

    async def query_snapshots(
        self, account_id: str, limit: Optional[int] = None
    ) -> list[PortfolioSnapshot]:
        """Most recent snapshots first; unbounded unless `limit` is given."""
        rows = await self._fetchall(
            f"SELECT {SNAPSHOT_COLUMNS} FROM portfolio_snapshots WHERE account_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (account_id, -1 if limit is None else limit),
        )
        return [self._to_snapshot(row) for row in rows]

    async def latest_snapshot(self, account_id: str) -> Optional[PortfolioSnapshot]:
        snapshots = await self.query_snapshots(account_id, limit=1)
        return snapshots[0] if snapshots else None

    async def find_snapshot_after(
        self, account_id: str, since: datetime, until: datetime
    ) -> Optional[PortfolioSnapshot]:
        """Earliest snapshot taken in [since, until]. Never looks before `since`."""
        row = await self._fetchone(
            f"SELECT {SNAPSHOT_COLUMNS} FROM portfolio_snapshots "
            "WHERE account_id = ? AND created_at >= ? AND created_at <= ? "
            "ORDER BY created_at ASC, id ASC LIMIT 1",
            (account_id, to_db_timestamp(since), to_db_timestamp(until)),
        )
        return self._to_snapshot(row) if row else None

    @staticmethod
    def _to_snapshot(row: dict) -> PortfolioSnapshot:
        raw = row.pop("snapshot_data")
        try:
            data = SnapshotData.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Unreadable snapshot payload: {e.error_count()} errors",
                extra={"snapshot_id": row.get("id")},
            )
            data = SnapshotData()
        return PortfolioSnapshot(snapshot_data=data, **row)


class NullLedgerStore:
    """Stand-in used when no database is configured or reachable.

    Writes are no-ops that warn once; reads return nothing. The trading loop
    keeps running in a dry mode.
    """

    available = False

    def __init__(self, reason: str = "DB_PATH is not set"):
        self.reason = reason
        self._warned = False

    def _warn_once(self):
        if not self._warned:
            logger.warning(
                "Ledger database is not configured, database operations are disabled",
                extra={"reason": self.reason},
            )
            self._warned = True

    async def init(self):
        self._warn_once()

    async def close(self):
        pass

    async def ensure_schema(self, force: bool = False):
        pass

    @asynccontextmanager
    async def transaction(self):
        yield self

    async def insert_buy(self, *args, **kwargs) -> None:
        self._warn_once()
        return None

    async def insert_sell(self, *args, **kwargs) -> None:
        self._warn_once()
        return None

    async def update_remaining_quantity(self, *args, **kwargs) -> None:
        self._warn_once()

    async def insert_snapshot(self, *args, **kwargs) -> None:
        self._warn_once()
        return None

    async def query_open_lots(self, *args, **kwargs) -> list[TradeRecord]:
        return []

    async def query_trades(self, *args, **kwargs) -> list[TradeRecord]:
        return []

    async def get_trade(self, *args, **kwargs) -> None:
        return None

    async def query_snapshots(self, *args, **kwargs) -> list[PortfolioSnapshot]:
        return []

    async def latest_snapshot(self, *args, **kwargs) -> None:
        return None

    async def find_snapshot_after(self, *args, **kwargs) -> None:
        return None


LedgerStore = Union[Database, NullLedgerStore]


async def open_ledger_store(db_path: str) -> LedgerStore:
    """Open the configured ledger, degrading to a NullLedgerStore when there is none.

    SchemaError is not caught: a database that opens but cannot hold the
    ledger tables must stop the caller.
    """
    if not db_path or not db_path.strip():
        store = NullLedgerStore("DB_PATH is not set")
        await store.init()
        return store

    db = Database(db_path)
    try:
        await db.init()
    except StoreUnavailable as e:
        logger.error(f"Ledger database unavailable: {e}")
        store = NullLedgerStore(str(e))
        await store.init()
        return store
    return db
