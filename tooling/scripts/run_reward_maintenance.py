"""Run reward ledger maintenance sweeps once.

Releases reward reservations that were never confirmed and expires claim
vouchers past their deadline. Intended for cron or manual invocation when the
in-process workers are disabled.

Example:
    python tooling/scripts/run_reward_maintenance.py --only reservations
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute reward ledger maintenance once")
    parser.add_argument(
        "--only",
        choices=("reservations", "vouchers"),
        default=None,
        help="Run a single sweep instead of both.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Override the number of rows processed per sweep.",
    )
    parser.add_argument(
        "--older-than-seconds",
        type=int,
        default=None,
        help="Override the age after which an unconfirmed reservation is released.",
    )
    return parser.parse_args()


async def _run(only: str | None, limit: int | None, older_than_seconds: int | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from rewardledger_api.db.session import async_session  # type: ignore import-position
    from rewardledger_api.workers import ReservationCleanupWorker, VoucherExpiryWorker  # type: ignore import-position

    summary: dict[str, int] = {}
    if only in (None, "reservations"):
        cleanup = ReservationCleanupWorker(
            async_session,  # type: ignore[arg-type]
            limit=limit,
            older_than_seconds=older_than_seconds,
        )
        summary.update(await cleanup.run_once())
    if only in (None, "vouchers"):
        expiry = VoucherExpiryWorker(async_session, limit=limit)  # type: ignore[arg-type]
        summary.update(await expiry.run_once())
    return summary


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.only, args.limit, args.older_than_seconds))
    logger.success(
        "Reward maintenance run completed",
        released=summary.get("released", 0),
        expired=summary.get("expired", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
