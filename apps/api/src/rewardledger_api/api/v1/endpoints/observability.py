"""Observability endpoints for reward ledger and claim voucher metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from rewardledger_api.api.dependencies.security import require_operator_api_key
from rewardledger_api.observability.rewards import get_reward_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/rewards",
    dependencies=[Depends(require_operator_api_key)],
    summary="Reward ledger observability snapshot",
)
async def get_reward_snapshot() -> dict[str, object]:
    return get_reward_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/rewards/prometheus",
    dependencies=[Depends(require_operator_api_key)],
    summary="Prometheus-formatted reward metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_reward_store().snapshot()
    lines: list[str] = []

    lines.extend(
        _format_metric(
            "rewardledger_attempts_total",
            "Daily reward attempts processed",
            snapshot.attempts.get("total", 0),
        )
    )
    for outcome, value in sorted(snapshot.attempts.items()):
        if outcome == "total":
            continue
        lines.extend(
            _format_metric(
                "rewardledger_attempt_outcomes_total",
                "Daily reward attempts grouped by outcome",
                value,
                labels={"outcome": outcome},
            )
        )

    for key, value in sorted(snapshot.recoveries.items()):
        source, _, outcome = key.partition(":")
        lines.extend(
            _format_metric(
                "rewardledger_recoveries_total",
                "Reward recoveries grouped by source and outcome",
                value,
                labels={"source": source, "outcome": outcome},
            )
        )

    lines.extend(
        _format_metric(
            "rewardledger_drift_total",
            "Attempts where the contract already recorded the app-day",
            snapshot.drift.get("total", 0),
        )
    )

    for event, value in sorted(snapshot.vouchers.items()):
        lines.extend(
            _format_metric(
                "rewardledger_voucher_events_total",
                "Claim voucher lifecycle events",
                value,
                labels={"event": event},
            )
        )

    for key, value in sorted(snapshot.sweeps.items()):
        kind, _, metric = key.rpartition("_")
        lines.extend(
            _format_metric(
                f"rewardledger_sweep_{metric}_total",
                "Maintenance sweep runs and affected rows",
                value,
                labels={"kind": kind},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
