from __future__ import annotations

import datetime as dt
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------
# Reference: categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Optional parent; when set, must point to a top-level category of the same
    # user. One level of nesting only, enforced in the service layer.
    parent_category_id: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)
    treat_as_income: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    hide_from_insights: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_categories_user_name"),)


# ---------------------------
# Merchants and their keywords
# ---------------------------


class Merchant(Base):
    __tablename__ = "merchants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    recommended_category_id: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # Keyword rows are owned by the merchant: deleting the merchant deletes them.
    keywords: Mapped[list[MerchantKeyword]] = relationship(
        back_populates="merchant",
        cascade="all, delete-orphan",
        order_by="MerchantKeyword.created_at",
    )

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_merchants_user_name"),)


class MerchantKeyword(Base):
    __tablename__ = "merchant_keywords"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    merchant_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("merchants.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    keyword: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    merchant: Mapped[Merchant] = relationship(back_populates="keywords")

    __table_args__ = (
        UniqueConstraint("merchant_id", "keyword", name="uq_merchant_keywords_merchant_keyword"),
    )


# ---------------------------
# Core: transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # Import-source identifier (e.g. QFX FITID). De-duplication key per user;
    # NULLs never conflict so manual entries are always inserted.
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Signed minor units (cents). The sign is authoritative: negative = money
    # out. Category flags never change how an amount is read.
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # Raw description as reported by the bank. Source of truth for keyword
    # and vendor matching; never rewritten by matching or propagation.
    transaction_details: Mapped[str] = mapped_column(Text, nullable=False)
    display_vendor: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant_id: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("merchants.id", ondelete="SET NULL"),
        nullable=True,
    )
    category_id: Mapped[str | None] = mapped_column(
        String,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Month-by-month split bookkeeping (all NULL for regular rows)
    split_group_id: Mapped[str | None] = mapped_column(String, nullable=True)
    split_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    split_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    original_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_transactions_user_external_id"),
        Index("ix_transactions_user_reviewed", "user_id", "reviewed"),
        Index("ix_transactions_user_merchant", "user_id", "merchant_id"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
    )


# ---------------------------
# API bearer tokens
# ---------------------------


class AuthToken(Base):
    __tablename__ = "auth_tokens"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    token: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


__all__ = [
    "Base",
    "Category",
    "Merchant",
    "MerchantKeyword",
    "Transaction",
    "AuthToken",
]
