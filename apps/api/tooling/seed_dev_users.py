"""Seed development member and operator users into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewardledger_api.core.settings import settings
from rewardledger_api.models.user import User, UserRoleEnum


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_MEMBER_EMAIL", "member@rewardledger.dev").lower(),
        "display_name": "Member QA",
        "role": UserRoleEnum.MEMBER.value,
    },
    {
        "email": os.getenv("DEV_OPERATOR_EMAIL", "operator@rewardledger.dev").lower(),
        "display_name": "Operator QA",
        "role": UserRoleEnum.OPERATOR.value,
    },
]


async def seed_users(session: AsyncSession) -> list[User]:
    seeded: list[User] = []
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.display_name = user["display_name"]
            record.role = user["role"]
        else:
            record = User(email=user["email"], display_name=user["display_name"], role=user["role"])
            session.add(record)
        seeded.append(record)
    await session.commit()
    return seeded


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            users = await seed_users(session)
        for user in users:
            print(f"{user.role:<8} {user.email} X-Session-User: {user.id}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
