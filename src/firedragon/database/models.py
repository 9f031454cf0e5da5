"""SQLAlchemy models for firedragon database."""

from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    TypeDecorator,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from firedragon.utils.date_parser import utcnow

Base = declarative_base()


class ExactDecimal(TypeDecorator):
    """Decimal stored as fixed-point text with 10 decimals.

    SQLite keeps NUMERIC values as floats, which loses digits on large
    balances. Amounts are never compared or summed in SQL.
    """

    impl = String(40)
    cache_ok = True

    SCALE = Decimal("0.0000000001")

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return format(value.quantize(self.SCALE), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


AMOUNT = ExactDecimal()


class Wallet(Base):
    """Wallet model."""

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)
    currency = Column(String(10), nullable=False)
    balance = Column(AMOUNT, nullable=False, default=0)
    opening_balance = Column(AMOUNT, nullable=False, default=0)
    wallet_type = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("wallet_type IN ('bank', 'crypto', 'cash')", name="ck_wallet_type"),
    )


class Category(Base):
    """Category model."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)
    category_type = Column(String, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    transactions = relationship("Transaction", back_populates="category")

    __table_args__ = (
        CheckConstraint(
            "category_type IN ('income', 'expense', 'transfer')", name="ck_category_type"
        ),
    )


class Transaction(Base):
    """Transaction model."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    amount = Column(AMOUNT, nullable=False)
    description = Column(String, nullable=True)
    date = Column(DateTime, nullable=False, index=True)
    transaction_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    dest_wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=True)
    exchange_rate = Column(AMOUNT, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    external_id = Column(String, nullable=True, unique=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    wallet = relationship("Wallet", foreign_keys=[wallet_id])
    dest_wallet = relationship("Wallet", foreign_keys=[dest_wallet_id])
    category = relationship("Category", back_populates="transactions")


class TransactionHistory(Base):
    """Append-only audit trail of ledger mutations.

    ``transaction_id`` is deliberately not a foreign key: entries outlive the
    transaction they describe once it is deleted.
    """

    __tablename__ = "transaction_history"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, nullable=False, index=True)
    action = Column(String, nullable=False)
    performed_at = Column(DateTime, default=utcnow, nullable=False)
    wallet_id = Column(Integer, nullable=False, index=True)
    old_balance = Column(AMOUNT, nullable=False)
    new_balance = Column(AMOUNT, nullable=False)
    dest_wallet_id = Column(Integer, nullable=True)
    old_dest_balance = Column(AMOUNT, nullable=True)
    new_dest_balance = Column(AMOUNT, nullable=True)
    balance_changes = Column(JSON, nullable=False, default=dict)
    changes = Column(JSON, nullable=False, default=dict)


class ImportRecord(Base):
    """External transaction ids that have been committed to the ledger."""

    __tablename__ = "import_records"

    external_id = Column(String, primary_key=True)
    source = Column(String, nullable=False, index=True)
    currency = Column(String, nullable=True)
    amount = Column(AMOUNT, nullable=True)
    transaction_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    occurred_at = Column(DateTime, nullable=True)
    transaction_id = Column(Integer, nullable=True)
    imported_at = Column(DateTime, default=utcnow, nullable=False)


class SourceWatermark(Base):
    """Last imported timestamp per source."""

    __tablename__ = "source_watermarks"

    source = Column(String, primary_key=True)
    last_import_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Import workers share the file from several threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    engine = create_engine(database_url, echo=False, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
