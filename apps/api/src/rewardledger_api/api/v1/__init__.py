from fastapi import APIRouter

from .endpoints import (
    claims,
    health,
    observability,
    operator,
    rewards,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(rewards.router)
router.include_router(claims.router)
router.include_router(operator.router)
router.include_router(observability.router)
