"""Shared fixtures for the progression ledger tests."""

import pytest
import pytest_asyncio

from clubledger.database.database import Database
from clubledger.operations.attendance_operations import AttendanceOperations
from clubledger.operations.ledger_operations import LedgerOperations
from clubledger.operations.reward_operations import RewardOperations
from clubledger.services.progression import ProgressionService


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh file-backed SQLite database per test."""
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def ledger_ops(db):
    return LedgerOperations(db)


@pytest.fixture
def attendance_ops(db, ledger_ops):
    return AttendanceOperations(db, ledger_ops)


@pytest.fixture
def reward_ops(db, ledger_ops):
    return RewardOperations(db, ledger_ops)


@pytest.fixture
def service(db):
    return ProgressionService(db)
