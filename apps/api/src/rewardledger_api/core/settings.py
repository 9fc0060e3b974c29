from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewardledger.db"
    otel_exporter_otlp_endpoint: str | None = None

    # Internal API security
    operator_api_key: str = ""

    # App-day boundary (fixed reference offset, not user-local time)
    reward_day_cutover_hour: int = Field(default=8, ge=0, le=23)
    reward_day_utc_offset_hours: int = Field(default=-8, ge=-12, le=14)

    # Daily reward ledger
    daily_reward_points: int = 50
    reward_streak_bonus_points: int = 0
    reward_reservation_stale_seconds: int = 15 * 60
    reward_stale_restart_limit: int = 2
    reward_concurrent_retry_after_seconds: int = 5
    reward_drift_alerts_enabled: bool = True
    reward_recovery_max_attempts: int = 5
    reward_recovery_window_seconds: int = 60 * 60

    # Reward contract (read-only cross-check)
    chain_rpc_url: str | None = None
    reward_contract_address: str | None = None
    chain_rpc_timeout_seconds: float = 4.0

    # Claim vouchers
    chain_id: int = 8453
    claim_token_decimals: int = 18
    claim_voucher_ttl_days: int = 30
    claim_signer_private_key: str = ""
    claim_signer_cache_ttl_seconds: int = 300
    claim_signer_allowed_addresses: list[str] = Field(default_factory=list)

    @field_validator("claim_signer_allowed_addresses", mode="before")
    @classmethod
    def _parse_address_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Vault configuration
    vault_addr: str | None = None
    vault_token: str | None = None
    vault_namespace: str | None = None
    vault_timeout_seconds: float = 5.0
    claim_signer_vault_path: str | None = None

    # Maintenance workers
    reservation_cleanup_worker_enabled: bool = False
    reservation_cleanup_interval_seconds: int = 5 * 60
    reservation_cleanup_limit: int = 200
    voucher_expiry_worker_enabled: bool = False
    voucher_expiry_interval_seconds: int = 60 * 60
    voucher_expiry_limit: int = 500


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
