"""Approved payouts and the signed vouchers that authorize their on-chain claim."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewardledger_api.db.base import Base


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class RewardPayoutStatus(str, Enum):
    """Lifecycle statuses for approved payouts."""

    APPROVED = "approved"
    CLAIMABLE = "claimable"
    COMPLETED = "completed"


class ClaimVoucherStatus(str, Enum):
    """Lifecycle statuses for issued claim vouchers."""

    ISSUED = "issued"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class RewardPayout(Base):
    """Token payout approved for a user, redeemable through a claim voucher."""

    __tablename__ = "reward_payouts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_events.id", ondelete="SET NULL"),
        nullable=True,
    )
    wallet_address = Column(String(42), nullable=False)
    # Base units can exceed 64 bits; stored as a decimal string.
    amount_base_units = Column(String(78), nullable=False)
    token_decimals = Column(Integer, nullable=False, default=18, server_default="18")
    status = Column(
        SqlEnum(RewardPayoutStatus, name="reward_payout_status", values_callable=_enum_values),
        nullable=False,
        default=RewardPayoutStatus.APPROVED,
        server_default=RewardPayoutStatus.APPROVED.value,
    )
    voucher_generation = Column(Integer, nullable=False, default=0, server_default="0")
    claim_tx_hash = Column(String(66), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    vouchers = relationship(
        "ClaimVoucher",
        back_populates="payout",
        cascade="all, delete-orphan",
        order_by="ClaimVoucher.generation",
    )

    @property
    def amount(self) -> int:
        return int(self.amount_base_units)


class ClaimVoucher(Base):
    """A single signing operation for a payout."""

    __tablename__ = "claim_vouchers"
    __table_args__ = (
        UniqueConstraint("nonce", name="uq_claim_vouchers_nonce"),
        Index(
            "uq_claim_vouchers_active_payout",
            "payout_id",
            unique=True,
            postgresql_where=text("status = 'issued'"),
            sqlite_where=text("status = 'issued'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    payout_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_payouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    wallet_address = Column(String(42), nullable=False)
    amount_base_units = Column(String(78), nullable=False)
    nonce = Column(String(96), nullable=False)
    nonce_hash = Column(String(66), nullable=False)
    generation = Column(Integer, nullable=False)
    chain_id = Column(Integer, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    signature = Column(Text, nullable=False)
    signer_address = Column(String(42), nullable=False)
    status = Column(
        SqlEnum(ClaimVoucherStatus, name="claim_voucher_status", values_callable=_enum_values),
        nullable=False,
        default=ClaimVoucherStatus.ISSUED,
        server_default=ClaimVoucherStatus.ISSUED.value,
    )
    issued_at = Column(DateTime(timezone=True), nullable=False)
    claim_tx_hash = Column(String(66), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    payout = relationship("RewardPayout", back_populates="vouchers")

    @property
    def amount(self) -> int:
        return int(self.amount_base_units)
