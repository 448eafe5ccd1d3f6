"""0001 odds movements and price baselines

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS odds_movements (
          seq BIGSERIAL PRIMARY KEY,
          id VARCHAR(64) NOT NULL UNIQUE,
          event_id VARCHAR(128) NOT NULL,
          market_id VARCHAR(128) NOT NULL,
          selection_id VARCHAR(128) NOT NULL,
          odds_format VARCHAR(16) NOT NULL,
          previous_value VARCHAR(32) NOT NULL,
          current_value VARCHAR(32) NOT NULL,
          movement_kind VARCHAR(16) NOT NULL,
          movement_percentage DOUBLE PRECISION NOT NULL,
          observed_at TIMESTAMPTZ NOT NULL,
          source VARCHAR(128) NOT NULL,
          metadata JSON NOT NULL DEFAULT '{}'::json
        );
        CREATE INDEX IF NOT EXISTS ix_odds_movements_key_ts
          ON odds_movements (event_id, market_id, selection_id, observed_at);
        CREATE INDEX IF NOT EXISTS ix_odds_movements_ts ON odds_movements (observed_at);

        CREATE TABLE IF NOT EXISTS odds_baselines (
          event_id VARCHAR(128) NOT NULL,
          market_id VARCHAR(128) NOT NULL,
          selection_id VARCHAR(128) NOT NULL,
          odds_format VARCHAR(16) NOT NULL,
          value VARCHAR(32) NOT NULL,
          observed_at TIMESTAMPTZ NOT NULL,
          PRIMARY KEY (event_id, market_id, selection_id)
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS odds_baselines;")
    op.execute("DROP TABLE IF EXISTS odds_movements;")
