from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from rewardledger_api.db.base import Base


class UserRoleEnum(str, Enum):
    MEMBER = "member"
    OPERATOR = "operator"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=True, unique=True, index=True)
    display_name = Column(String, nullable=True)
    external_ref = Column(String(64), nullable=True, unique=True)
    role = Column(String(length=16), nullable=False, default=UserRoleEnum.MEMBER.value, server_default=UserRoleEnum.MEMBER.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
