"""Access codes — QR codes, scan log, review flags and anchoring queue

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Changes:
  - Create access_codes with a partial unique index: one active code per registration
  - Create scan_attempts (append-only scan log)
  - Create scan_reviews (granted scans flagged by the anchor check)
  - Create anchor_records (tamper-evidence anchoring queue)
  - Create attendance_retries (check-ins to replay after a collaborator failure)

events / registrations / attendances belong to the platform and are not
managed here.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── access_codes ──────────────────────────────────────────────────────────
    op.create_table(
        "access_codes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("registration_id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("issued_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("invalidation_reason", sa.String(500), nullable=True),
        sa.Column("invalidated_at", sa.DateTime(), nullable=True),
        sa.Column("invalidated_by", sa.Integer(), nullable=True),
        sa.Column("issued_by", sa.Integer(), nullable=True),
        sa.Column("replaces_id", sa.String(36), nullable=True),
        sa.Column("anchor_hash", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_access_codes_token_hash", "access_codes", ["token_hash"], unique=True)
    op.create_index("ix_access_codes_registration_id", "access_codes", ["registration_id"])
    op.create_index("ix_access_codes_event_id", "access_codes", ["event_id"])
    op.create_index("ix_access_codes_status", "access_codes", ["status"])

    # At most one active code per registration
    op.create_index(
        "uq_access_codes_active_registration",
        "access_codes",
        ["registration_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    # ── scan_attempts ─────────────────────────────────────────────────────────
    op.create_table(
        "scan_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("scanned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("token_presented", sa.String(64), nullable=False),
        sa.Column("access_code_id", sa.String(36), nullable=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("access_point", sa.String(100), nullable=False),
        sa.Column("device_info", sa.JSON(), nullable=True),
        sa.Column("location", sa.JSON(), nullable=True),
        sa.Column("scanned_by", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(10), nullable=False),
        sa.Column("reason", sa.String(40), nullable=True),
    )
    op.create_index("ix_scan_attempts_scanned_at", "scan_attempts", ["scanned_at"])
    op.create_index("ix_scan_attempts_access_code_id", "scan_attempts", ["access_code_id"])
    op.create_index("ix_scan_attempts_event_id", "scan_attempts", ["event_id"])

    # ── scan_reviews ──────────────────────────────────────────────────────────
    op.create_table(
        "scan_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "scan_attempt_id",
            sa.Integer(),
            sa.ForeignKey("scan_attempts.id"),
            nullable=False,
        ),
        sa.Column("access_code_id", sa.String(36), nullable=False),
        sa.Column("anchor_status", sa.String(20), nullable=False),
        sa.Column("evidence", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_scan_reviews_access_code_id", "scan_reviews", ["access_code_id"])

    # ── anchor_records ────────────────────────────────────────────────────────
    op.create_table(
        "anchor_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("access_code_id", sa.String(36), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("receipt_id", sa.String(255), nullable=True),
        sa.Column("anchored_at", sa.DateTime(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_anchor_records_access_code_id", "anchor_records", ["access_code_id"])
    op.create_index("ix_anchor_records_code_hash", "anchor_records", ["code_hash"])

    # ── attendance_retries ────────────────────────────────────────────────────
    op.create_table(
        "attendance_retries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("registration_id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("access_code_id", sa.String(36), nullable=False),
        sa.Column("access_point", sa.String(100), nullable=False),
        sa.Column("scanned_by", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_attendance_retries_access_code_id", "attendance_retries", ["access_code_id"])
    op.create_index("ix_attendance_retries_status", "attendance_retries", ["status"])


def downgrade() -> None:
    op.drop_index("ix_attendance_retries_status", table_name="attendance_retries")
    op.drop_index("ix_attendance_retries_access_code_id", table_name="attendance_retries")
    op.drop_table("attendance_retries")
    op.drop_index("ix_anchor_records_code_hash", table_name="anchor_records")
    op.drop_index("ix_anchor_records_access_code_id", table_name="anchor_records")
    op.drop_table("anchor_records")
    op.drop_index("ix_scan_reviews_access_code_id", table_name="scan_reviews")
    op.drop_table("scan_reviews")
    op.drop_index("ix_scan_attempts_event_id", table_name="scan_attempts")
    op.drop_index("ix_scan_attempts_access_code_id", table_name="scan_attempts")
    op.drop_index("ix_scan_attempts_scanned_at", table_name="scan_attempts")
    op.drop_table("scan_attempts")
    op.drop_index("uq_access_codes_active_registration", table_name="access_codes")
    op.drop_index("ix_access_codes_status", table_name="access_codes")
    op.drop_index("ix_access_codes_event_id", table_name="access_codes")
    op.drop_index("ix_access_codes_registration_id", table_name="access_codes")
    op.drop_index("ix_access_codes_token_hash", table_name="access_codes")
    op.drop_table("access_codes")
