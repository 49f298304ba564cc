"""Portfolio snapshots: point-in-time value, P&L delta and agent reasoning."""
import json
import logging
import re
from typing import Optional

import aiosqlite

from shared.schemas import PortfolioSnapshot, PositionWithPnL, SnapshotData
from shared.utils import round_to_two, safe_percent
from storage.db import LedgerStore
from storage.errors import LedgerError, SnapshotWriteFailure

logger = logging.getLogger(__name__)

DEFAULT_REASONING = "Agent processing market data..."
RECORDED_DECISION = "Agent decision recorded"

_FENCE_PATTERNS = [
    re.compile(r"```json\n?"),
    re.compile(r"\n```"),
    re.compile(r"```\n?"),
]


def clean_reasoning(text: Optional[str]) -> Optional[str]:
    """Strip markdown code-fence markers from model output."""
    if not text:
        return None
    for pattern in _FENCE_PATTERNS:
        text = pattern.sub("", text)
    text = text.strip()
    return text or None


def parse_ai_reasoning(
    snapshot_data: Optional[SnapshotData],
    fallback: str = DEFAULT_REASONING,
    limit: int = 200,
) -> str:
    """Human-readable reasoning for a snapshot.

    Prefers the cleaned reasoning; otherwise digs into the raw model output,
    reading `reasoning`/`action` when it is JSON and truncating it when not.
    """
    if snapshot_data is None:
        return fallback
    if snapshot_data.reasoning:
        return snapshot_data.reasoning
    raw = snapshot_data.raw_ai_response
    if not raw:
        return fallback
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw[:limit] + "..."
    if isinstance(parsed, dict):
        return parsed.get("reasoning") or parsed.get("action") or RECORDED_DECISION
    return RECORDED_DECISION


class SnapshotRecorder:
    """Persists snapshots without ever failing the trading cycle."""

    def __init__(self, store: LedgerStore):
        self.store = store

    async def record_snapshot(
        self,
        account_id: str,
        positions: list[PositionWithPnL],
        total_usd: float,
        previous_usd: float,
        reasoning_text: Optional[str] = None,
        market_analysis: Optional[str] = None,
    ) -> Optional[int]:
        """Write one snapshot row; returns its id, or None if it was not stored."""
        pnl_usd = total_usd - previous_usd
        pnl_percent = safe_percent(pnl_usd, previous_usd)
        cleaned = clean_reasoning(reasoning_text)

        snapshot = PortfolioSnapshot(
            account_id=account_id,
            snapshot_data=SnapshotData(
                positions=positions,
                reasoning=cleaned,
                raw_ai_response=reasoning_text,
                market_analysis=market_analysis,
            ),
            total_usd_value=total_usd,
            pnl_usd=pnl_usd,
            pnl_percent=pnl_percent,
        )

        try:
            snapshot_id = await self._write(snapshot)
        except SnapshotWriteFailure as e:
            logger.error(f"Error storing portfolio snapshot: {e}", extra={"account_id": account_id})
            return None

        logger.info(
            "Portfolio snapshot",
            extra={
                "snapshot_id": snapshot_id,
                "total_usd": round_to_two(total_usd),
                "pnl_percent": round_to_two(pnl_percent),
                "reasoning": "stored" if cleaned else "none",
            },
        )
        return snapshot_id

    async def _write(self, snapshot: PortfolioSnapshot) -> Optional[int]:
        try:
            await self.store.ensure_schema()
            return await self.store.insert_snapshot(snapshot)
        except (LedgerError, aiosqlite.Error) as e:
            raise SnapshotWriteFailure(str(e)) from e
