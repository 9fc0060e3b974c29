from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for ledger, payout and voucher tables."""


# Import models to ensure metadata registration for Alembic
try:  # pragma: no cover - import side effects only
    import rewardledger_api.models  # noqa: F401
except ImportError:  # pragma: no cover - partial imports during migrations
    pass
