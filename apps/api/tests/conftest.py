import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewardledger_api.app import create_app  # noqa: E402
from rewardledger_api.db.base import Base  # noqa: E402
from rewardledger_api.db.session import get_session  # noqa: E402
from rewardledger_api.observability.rewards import get_reward_store  # noqa: E402
from rewardledger_api.services.rewards.throttle import get_recovery_throttle  # noqa: E402

# Hardhat development account #0; never funded outside local chains.
TEST_SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class StubContractClient:
    """In-memory stand-in for the reward contract RPC."""

    def __init__(
        self,
        *,
        last_day_start: int = 0,
        tx_succeeded: bool = True,
        delay_seconds: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.last_day_start_value = last_day_start
        self.tx_succeeded = tx_succeeded
        self.delay_seconds = delay_seconds
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def last_day_start(self, wallet_address: str) -> int:
        self.calls.append(("last_day_start", wallet_address))
        await self._maybe_fail()
        return self.last_day_start_value

    async def transaction_succeeded(self, tx_hash: str, wallet_address: str | None) -> bool:
        self.calls.append(("transaction_succeeded", tx_hash))
        await self._maybe_fail()
        return self.tx_succeeded

    async def _maybe_fail(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error


@pytest.fixture
def stub_contract_client():
    return StubContractClient


@pytest.fixture
def signer_key() -> str:
    return TEST_SIGNER_KEY


@pytest.fixture(autouse=True)
def reset_reward_store():
    store = get_reward_store()
    store.reset()
    yield store
    store.reset()


@pytest.fixture(autouse=True)
def reset_recovery_throttle():
    throttle = get_recovery_throttle()
    throttle.reset()
    yield throttle
    throttle.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
