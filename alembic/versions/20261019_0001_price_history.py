"""Price history table for spot/oracle valuation snapshots.

Revision ID: 001_price_history
Revises:
Create Date: 2026-10-19 00:01:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_price_history"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "price_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_address", sa.String(42), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.String(78), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("block_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fetch_spot", sa.String(78), nullable=False),
        sa.Column("fetch_oracle", sa.String(78), nullable=False),
        sa.Column("amount_in", sa.String(78), nullable=False),
        sa.Column("token0_address", sa.String(42), nullable=False),
        sa.Column("token1_address", sa.String(42), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_price_history_contract_chain_ts",
        "price_history",
        ["contract_address", "chain_id", "block_timestamp"],
    )


def downgrade() -> None:
    op.drop_index("idx_price_history_contract_chain_ts", table_name="price_history")
    op.drop_table("price_history")
