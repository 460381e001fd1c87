"""Reject duplicate rows for the same contract, chain and block.

Existing duplicates must be removed before upgrading; the constraint makes
repeated runs against an unchanged block report a conflict instead of
silently adding a second row.

Revision ID: 002_price_history_unique_block
Revises: 001_price_history
Create Date: 2026-10-19 00:02:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op

revision: str = "002_price_history_unique_block"
down_revision: Union[str, None] = "001_price_history"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_unique_constraint(
        "uq_price_history_contract_chain_block",
        "price_history",
        ["contract_address", "chain_id", "block_number"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_price_history_contract_chain_block", "price_history", type_="unique")
