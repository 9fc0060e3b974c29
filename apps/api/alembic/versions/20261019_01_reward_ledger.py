"""Users, daily reward ledger, payouts and claim vouchers.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


completion_source_enum = sa.Enum(
    "standard",
    "self_recovery",
    "operator_forced",
    name="reward_completion_source",
)
payout_status_enum = sa.Enum("approved", "claimable", "completed", name="reward_payout_status")
voucher_status_enum = sa.Enum("issued", "claimed", "expired", "superseded", name="claim_voucher_status")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("external_ref", sa.String(length=64), nullable=True, unique=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "reward_events",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("app_day", sa.Date(), nullable=False),
        sa.Column("wallet_address", sa.String(length=42), nullable=True),
        sa.Column("amount_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("completion_source", completion_source_enum, nullable=True),
        sa.Column("onchain_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("onchain_last_day_start", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "app_day", name="uq_reward_events_user_app_day"),
        sa.UniqueConstraint("source_tx_hash", name="uq_reward_events_source_tx_hash"),
    )
    op.create_index("ix_reward_events_user_id", "reward_events", ["user_id"])
    op.create_index(
        "ix_reward_events_pending_reserved_at",
        "reward_events",
        ["reserved_at"],
        postgresql_where=sa.text("confirmed_at IS NULL"),
    )

    op.create_table(
        "reward_payouts",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "reward_event_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("reward_events.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("wallet_address", sa.String(length=42), nullable=False),
        sa.Column("amount_base_units", sa.String(length=78), nullable=False),
        sa.Column("token_decimals", sa.Integer(), nullable=False, server_default="18"),
        sa.Column("status", payout_status_enum, nullable=False, server_default="approved"),
        sa.Column("voucher_generation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claim_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reward_payouts_user_id", "reward_payouts", ["user_id"])

    op.create_table(
        "claim_vouchers",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "payout_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("reward_payouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("wallet_address", sa.String(length=42), nullable=False),
        sa.Column("amount_base_units", sa.String(length=78), nullable=False),
        sa.Column("nonce", sa.String(length=96), nullable=False),
        sa.Column("nonce_hash", sa.String(length=66), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("signature", sa.Text(), nullable=False),
        sa.Column("signer_address", sa.String(length=42), nullable=False),
        sa.Column("status", voucher_status_enum, nullable=False, server_default="issued"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claim_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("nonce", name="uq_claim_vouchers_nonce"),
    )
    op.create_index("ix_claim_vouchers_payout_id", "claim_vouchers", ["payout_id"])
    op.create_index(
        "uq_claim_vouchers_active_payout",
        "claim_vouchers",
        ["payout_id"],
        unique=True,
        postgresql_where=sa.text("status = 'issued'"),
        sqlite_where=sa.text("status = 'issued'"),
    )


def downgrade() -> None:
    op.drop_index("uq_claim_vouchers_active_payout", table_name="claim_vouchers")
    op.drop_index("ix_claim_vouchers_payout_id", table_name="claim_vouchers")
    op.drop_table("claim_vouchers")
    op.drop_index("ix_reward_payouts_user_id", table_name="reward_payouts")
    op.drop_table("reward_payouts")
    op.drop_index("ix_reward_events_pending_reserved_at", table_name="reward_events")
    op.drop_index("ix_reward_events_user_id", table_name="reward_events")
    op.drop_table("reward_events")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    voucher_status_enum.drop(bind, checkfirst=True)
    payout_status_enum.drop(bind, checkfirst=True)
    completion_source_enum.drop(bind, checkfirst=True)
