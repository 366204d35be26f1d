"""Artist contract registry, trade ledger and candles.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "artist_contracts",
        sa.Column("artist_id", sa.Integer(), nullable=False),
        sa.Column("contract_address", sa.String(42), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("artist_id"),
        sa.UniqueConstraint("contract_address", name="uq_artist_contracts_address"),
    )

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("artist_id", sa.Integer(), nullable=False),
        sa.Column("contract_address", sa.String(42), nullable=False),
        sa.Column("trader_address", sa.String(42), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("price_raw", sa.Numeric(40, 0), nullable=False),
        sa.Column("eth_value", sa.Numeric(38, 18), nullable=False),
        sa.Column("eth_usd_rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("amount_usd", sa.Numeric(30, 2), nullable=False),
        sa.Column("price_usd", sa.Numeric(38, 18), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("log_index", sa.Integer(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", name="uq_trades_tx_hash"),
    )
    op.create_index("idx_trades_artist_ts", "trades", ["artist_id", "ts"])
    op.create_index("idx_trades_trader_ts", "trades", ["trader_address", "ts"])

    op.create_table(
        "candles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("artist_id", sa.Integer(), nullable=False),
        sa.Column("timeframe", sa.String(4), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("open", sa.Numeric(38, 18), nullable=False),
        sa.Column("high", sa.Numeric(38, 18), nullable=False),
        sa.Column("low", sa.Numeric(38, 18), nullable=False),
        sa.Column("close", sa.Numeric(38, 18), nullable=False),
        sa.Column("volume", sa.Numeric(38, 18), nullable=False),
        sa.Column("trade_count", sa.Integer(), nullable=False),
        sa.Column("last_side", sa.String(4), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("artist_id", "timeframe", "period_start", name="uq_candles_artist_tf_period"),
    )
    op.create_index("idx_candles_artist_tf_period", "candles", ["artist_id", "timeframe", "period_start"])


def downgrade() -> None:
    op.drop_index("idx_candles_artist_tf_period", table_name="candles")
    op.drop_table("candles")
    op.drop_index("idx_trades_trader_ts", table_name="trades")
    op.drop_index("idx_trades_artist_ts", table_name="trades")
    op.drop_table("trades")
    op.drop_table("artist_contracts")
