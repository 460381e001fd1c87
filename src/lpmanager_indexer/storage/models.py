"""SQLAlchemy models for persistent storage.

This module defines the append-only ``price_history`` table. Large integers
(uint256 valuations, block numbers) are stored as decimal strings so that no
backend silently rounds them.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Decimal digits of 2**256 - 1
UINT256_DIGITS = 78


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class PriceHistoryModel(Base):
    """One spot/oracle valuation of a contract at a block height."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[str] = mapped_column(String(UINT256_DIGITS), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    fetch_spot: Mapped[str] = mapped_column(String(UINT256_DIGITS), nullable=False)
    fetch_oracle: Mapped[str] = mapped_column(String(UINT256_DIGITS), nullable=False)
    amount_in: Mapped[str] = mapped_column(String(UINT256_DIGITS), nullable=False)
    token0_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token1_address: Mapped[str] = mapped_column(String(42), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "contract_address",
            "chain_id",
            "block_number",
            name="uq_price_history_contract_chain_block",
        ),
        Index("idx_price_history_contract_chain_ts", "contract_address", "chain_id", "block_timestamp"),
    )
