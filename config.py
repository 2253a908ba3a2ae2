"""
Application settings.

Values come from the environment, with a `.env` file at the project root
loaded first (existing environment variables win). Nothing here fails at
import time: missing credentials surface as ConfigurationError when the
component that needs them is first used.
"""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Observed as 30 minutes in an early revision of the storefront, 5 later.
    payment_window_minutes: float = Field(default=5, gt=0)

    bank_account_number: Optional[str] = None
    payment_feed_api_key: Optional[str] = None
    payment_feed_url: str = "https://my.sepay.vn/userapi/transactions/list"
    payment_feed_limit: int = Field(default=20, ge=1, le=500)
    payment_feed_timeout_seconds: float = Field(default=10.0, gt=0)

    order_code_prefix: str = "MMO"
    order_code_max_attempts: int = Field(default=5, ge=1)

    # 0 disables the in-process background sweep (cron script still works).
    expiry_sweep_interval_seconds: float = Field(default=60.0, ge=0)

    log_level: str = "INFO"

    @property
    def payment_window(self) -> timedelta:
        return timedelta(minutes=self.payment_window_minutes)

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "supabase_url": _env("SUPABASE_URL"),
            "supabase_key": _env("SUPABASE_KEY"),
            "payment_window_minutes": _env("PAYMENT_WINDOW_MINUTES"),
            "bank_account_number": _env("BANK_ACCOUNT_NUMBER"),
            "payment_feed_api_key": _env("PAYMENT_FEED_API_KEY"),
            "payment_feed_url": _env("PAYMENT_FEED_URL"),
            "payment_feed_limit": _env("PAYMENT_FEED_LIMIT"),
            "payment_feed_timeout_seconds": _env("PAYMENT_FEED_TIMEOUT_SECONDS"),
            "order_code_prefix": _env("ORDER_CODE_PREFIX"),
            "order_code_max_attempts": _env("ORDER_CODE_MAX_ATTEMPTS"),
            "expiry_sweep_interval_seconds": _env("EXPIRY_SWEEP_INTERVAL_SECONDS"),
            "log_level": _env("LOG_LEVEL"),
        }
        # Unset values fall back to the model defaults.
        return cls(**{key: value for key, value in values.items() if value is not None})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = ["Settings", "get_settings"]
