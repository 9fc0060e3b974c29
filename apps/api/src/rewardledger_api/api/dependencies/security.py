from fastapi import Header, HTTPException, status

from rewardledger_api.core.settings import settings


async def require_operator_api_key(
    x_api_key: str = Header("", alias="X-API-Key"),
    x_operator_id: str | None = Header(None, alias="X-Operator-Id"),
) -> str:
    """Gate operator routes and return the operator label used in audit logs."""

    if not settings.operator_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator API key not configured",
        )

    if x_api_key != settings.operator_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return (x_operator_id or "operator").strip() or "operator"
