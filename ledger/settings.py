from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEDGER_", env_file=".env", extra="ignore")

    data_dir: Optional[Path] = Field(default=None, description="Directory for JSON storage; unset keeps state in memory")
    config_file: Optional[Path] = Field(default=None, description="JSON file with invite/VIP tiers and fee tables")
    log_level: str = "INFO"
    currency: str = "CNY"

    recharge_expiry_hours: int = Field(default=24, gt=0)
    default_commission_rate: Decimal = Field(default=Decimal("0.10"), ge=0)
    auto_validate_invites: bool = True
    enforce_daily_task_limit: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
