from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from rewardledger_api.core.settings import settings
from rewardledger_api.services.rewards import build_default_chain_reader


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


def _worker_component(request: Request, attribute: str, enabled: bool, label: str) -> ComponentStatus:
    worker = getattr(request.app.state, attribute, None)
    if not enabled or worker is None:
        return ComponentStatus(status="disabled", detail=f"{label} disabled via settings")
    if getattr(worker, "is_running", False):
        return ComponentStatus(status="ready")
    return ComponentStatus(status="starting", detail=f"{label} not running")


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {
        "reservation_cleanup": _worker_component(
            request,
            "reservation_cleanup_worker",
            settings.reservation_cleanup_worker_enabled,
            "Reservation cleanup worker",
        ),
        "voucher_expiry": _worker_component(
            request,
            "voucher_expiry_worker",
            settings.voucher_expiry_worker_enabled,
            "Voucher expiry worker",
        ),
    }

    if build_default_chain_reader().configured:
        components["chain_reader"] = ComponentStatus(status="ready")
    else:
        components["chain_reader"] = ComponentStatus(
            status="degraded",
            detail="Reward contract reader not configured; attempts run ledger-only",
        )

    status: Literal["ready", "degraded"] = "ready"
    if any(component.status in ("starting", "degraded") for component in components.values()):
        status = "degraded"
    return ReadinessPayload(status=status, components=components)
