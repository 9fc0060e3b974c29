"""Daily reward ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from rewardledger_api.db.base import Base


class RewardCompletionSource(str, Enum):
    """How a reservation reached the confirmed state."""

    STANDARD = "standard"
    SELF_RECOVERY = "self_recovery"
    OPERATOR_FORCED = "operator_forced"


class RewardEvent(Base):
    """One reward attempt for a (user, app-day) slot.

    A row without ``confirmed_at`` is a reservation; abandoned reservations are
    deleted rather than archived so the slot lookup stays unambiguous.
    """

    __tablename__ = "reward_events"
    __table_args__ = (
        UniqueConstraint("user_id", "app_day", name="uq_reward_events_user_app_day"),
        UniqueConstraint("source_tx_hash", name="uq_reward_events_source_tx_hash"),
        Index(
            "ix_reward_events_pending_reserved_at",
            "reserved_at",
            postgresql_where=text("confirmed_at IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    app_day = Column(Date, nullable=False)
    wallet_address = Column(String(42), nullable=True)
    amount_awarded = Column(Integer, nullable=False, default=0, server_default="0")
    streak_count = Column(Integer, nullable=False, default=0, server_default="0")
    reserved_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    source_tx_hash = Column(String(66), nullable=True)
    completion_source = Column(
        SqlEnum(
            RewardCompletionSource,
            name="reward_completion_source",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    onchain_checked_at = Column(DateTime(timezone=True), nullable=True)
    onchain_last_day_start = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None
