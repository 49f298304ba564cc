"""Test configuration and fixtures."""
import sys
from pathlib import Path

import pytest_asyncio

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "tests"))

from storage.db import Database  # noqa: E402


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh on-disk ledger per test."""
    database = Database(str(tmp_path / "ledger.db"))
    await database.init()
    yield database
    await database.close()
