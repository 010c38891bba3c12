"""
Relational Schema

Five tables:

- accounts: balance-bearing accounts, one owner each
- transactions: the logical event (header)
- transaction_amounts: split rows; each points at an account OR carries a name
- transaction_tags: free-text tags
- friendships: read-only here, managed by the friends feature

Money columns store integer ten-thousandths (FixedPoint), so the database
never rounds a balance through a float.
"""

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from splitledger.models.ledger import utcnow


# SQLite only auto-increments INTEGER PRIMARY KEY
Identifier = BigInteger().with_variant(Integer, "sqlite")

SCALE = Decimal("0.0001")


class FixedPoint(TypeDecorator):
    """Decimal with 4 fractional digits, stored as a scaled BIGINT."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        units = Decimal(value).quantize(SCALE, rounding=ROUND_HALF_EVEN) / SCALE
        return int(units)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(value) * SCALE).quantize(SCALE)


class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    balance: Mapped[Decimal] = mapped_column(FixedPoint, nullable=False, default=Decimal("0"))
    created_on: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    is_income: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    include_in_reports: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_on: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    amounts: Mapped[list["TransactionAmountRow"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionAmountRow.id",
    )
    tags: Mapped[list["TransactionTagRow"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionTagRow.id",
    )


class TransactionAmountRow(Base):
    __tablename__ = "transaction_amounts"

    __table_args__ = (
        # A registered account appears at most once per transaction
        UniqueConstraint("transaction_id", "account_id", name="uq_amounts_transaction_account"),
        CheckConstraint(
            "(account_id IS NULL AND account_name IS NOT NULL)"
            " OR (account_id IS NOT NULL AND account_name IS NULL)",
            name="ck_amounts_single_target",
        ),
        CheckConstraint("amount_to_pay >= 0", name="ck_amounts_to_pay_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_amounts_paid_non_negative"),
        Index("ix_amounts_account", "account_id"),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No ON DELETE action: account deletion converts rows to a name first
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    account_name: Mapped[Optional[str]] = mapped_column(String(255))
    amount_to_pay: Mapped[Decimal] = mapped_column(FixedPoint, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(FixedPoint, nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    transaction: Mapped[TransactionRow] = relationship(back_populates="amounts")


class TransactionTagRow(Base):
    __tablename__ = "transaction_tags"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag: Mapped[str] = mapped_column(String(255), nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    transaction: Mapped[TransactionRow] = relationship(back_populates="tags")


class FriendshipRow(Base):
    __tablename__ = "friendships"

    __table_args__ = (
        CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    friend_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_on: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
