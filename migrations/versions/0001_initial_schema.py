"""Initial schema: scan_task

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- scan_task ---
    # One row per file path.  scan_state is guarded by conditional UPDATEs,
    # so it stays a plain text column rather than a database ENUM.
    op.create_table(
        "scan_task",
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("scan_state", sa.Text(), nullable=False),
        sa.Column("created_ts", sa.BigInteger(), nullable=False),
        sa.Column("scan_start_ts", sa.BigInteger(), nullable=False, server_default="-1"),
        sa.Column("scan_end_ts", sa.BigInteger(), nullable=False, server_default="-1"),
        sa.Column("scan_result", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("viruses", sa.JSON(), nullable=False),
        sa.Column("scan_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("size_mb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("file_hash", sa.Text(), nullable=False, server_default=""),
        sa.Column("notify_channels", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("file_path"),
    )
    op.create_index(
        "ix_scan_task_state_created",
        "scan_task",
        ["scan_state", "created_ts"],
    )


def downgrade() -> None:
    op.drop_index("ix_scan_task_state_created", table_name="scan_task")
    op.drop_table("scan_task")
