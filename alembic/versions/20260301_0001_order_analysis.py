"""order_analysis table for completed cross-chain swap orders.

Revision ID: 001_order_analysis
Revises:
Create Date: 2026-03-01 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_order_analysis"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "order_analysis",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("create_order_id", sa.Text(), nullable=False),
        sa.Column("source_swap_id", sa.Text(), nullable=False),
        sa.Column("destination_swap_id", sa.Text(), nullable=False),
        sa.Column("source_chain", sa.String(64), nullable=False),
        sa.Column("destination_chain", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        # Milestones
        sa.Column("user_init", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cobi_init", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_redeem", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cobi_redeem", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_refund", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cobi_refund", sa.DateTime(timezone=True), nullable=True),
        sa.Column("secret_hash", sa.Text(), nullable=True),
        # Block numbers backing each milestone
        sa.Column("user_init_block_number", sa.BigInteger(), nullable=True),
        sa.Column("cobi_init_block_number", sa.BigInteger(), nullable=True),
        sa.Column("user_redeem_block_number", sa.BigInteger(), nullable=True),
        sa.Column("cobi_redeem_block_number", sa.BigInteger(), nullable=True),
        sa.Column("user_refund_block_number", sa.BigInteger(), nullable=True),
        sa.Column("cobi_refund_block_number", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("create_order_id"),
    )
    op.create_index(
        "idx_order_analysis_pair_created",
        "order_analysis",
        ["source_chain", "destination_chain", "created_at"],
    )
    op.create_index("idx_order_analysis_created_at", "order_analysis", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_order_analysis_created_at", table_name="order_analysis")
    op.drop_index("idx_order_analysis_pair_created", table_name="order_analysis")
    op.drop_table("order_analysis")
