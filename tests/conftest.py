"""Shared pytest fixtures for firedragon tests."""

import os
import tempfile
from dataclasses import replace
from decimal import Decimal

import pytest

from firedragon.config import RetryConfig, SourceConfig
from firedragon.database.factories import create_sqlite_database
from firedragon.domain.category import CategoryService
from firedragon.domain.import_ledger import ImportLedger
from firedragon.domain.ledger import LedgerEngine
from firedragon.domain.wallet import WalletService
from firedragon.importer.orchestrator import ImportOrchestrator, ImportSource

from fakes import FakeSink, FakeSource


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def wallet_service(temp_db):
    """Create a WalletService with a temporary database."""
    return WalletService(temp_db)


@pytest.fixture
def category_service(temp_db):
    """Create a CategoryService with a temporary database."""
    return CategoryService(temp_db)


@pytest.fixture
def ledger(temp_db):
    """Create a LedgerEngine with a temporary database."""
    return LedgerEngine(temp_db)


@pytest.fixture
def import_ledger(temp_db):
    return ImportLedger(temp_db)


@pytest.fixture
def categories(category_service):
    """Seed the system categories and return them by name."""
    category_service.seed_system_categories()
    return {c.name: c for c in category_service.list_categories()}


@pytest.fixture
def usd_wallet(wallet_service):
    """USD wallet opened with 1000."""
    wallet_id = wallet_service.create_wallet(
        name="Checking", currency="USD", opening_balance=Decimal("1000")
    )
    return wallet_service.get_wallet(wallet_id)


@pytest.fixture
def savings_wallet(wallet_service):
    """Second USD wallet opened with 0."""
    wallet_id = wallet_service.create_wallet(name="Savings", currency="USD")
    return wallet_service.get_wallet(wallet_id)


@pytest.fixture
def eur_wallet(wallet_service):
    """EUR wallet opened with 0."""
    wallet_id = wallet_service.create_wallet(name="Euro", currency="EUR")
    return wallet_service.get_wallet(wallet_id)


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def source_config(usd_wallet, categories):
    """Source config importing into the Checking wallet."""
    return SourceConfig(name="bank", type="fake", account="acct-1", wallet=usd_wallet.name)


@pytest.fixture
def orchestrator(temp_db, fake_sink):
    """Orchestrator without retry delays."""
    return ImportOrchestrator(temp_db, fake_sink, retry=RetryConfig(attempts=3, backoff_seconds=0))


@pytest.fixture
def make_source(source_config):
    def factory(transactions=None, failures=None, balance="0", **overrides):
        config = source_config
        if overrides:
            config = replace(source_config, **overrides)
        return ImportSource(config=config, adapter=FakeSource(transactions, failures, balance))

    return factory


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()

