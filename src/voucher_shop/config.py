"""Application settings loaded from environment variables."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DENOMINATIONS = (600, 1000, 1500, 7000)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_denominations(raw: Optional[str]) -> Tuple[int, ...]:
    """Parse a comma separated list of voucher face values.

    Raises:
        ValueError: If a value is not a positive integer.
    """
    if not raw:
        return DEFAULT_DENOMINATIONS
    values = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        amount = int(part)
        if amount <= 0:
            raise ValueError(f"Denomination must be positive, got {amount}")
        values.append(amount)
    if not values:
        return DEFAULT_DENOMINATIONS
    return tuple(sorted(set(values)))


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the voucher shop."""
    database_url: Optional[str] = None
    denominations: Tuple[int, ...] = DEFAULT_DENOMINATIONS
    currency: str = "UGX"

    # Payment provider
    payment_provider: str = "marzpay"
    marzpay_base_url: str = "https://wallet.wearemarz.com"
    marzpay_api_key: str = ""
    marzpay_api_secret: str = ""
    marzpay_callback_url: Optional[str] = None
    provider_timeout_seconds: float = 20.0

    # Client polling and stale payment handling
    poll_interval_seconds: float = 3.0
    poll_timeout_seconds: float = 300.0
    stale_payment_minutes: int = 60

    # Policy knobs
    one_voucher_per_subscriber: bool = False
    enable_test_endpoints: bool = False
    pay_rate_limit: str = "10/minute"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            denominations=_parse_denominations(os.getenv("VOUCHER_DENOMINATIONS")),
            currency=os.getenv("CURRENCY", "UGX"),
            payment_provider=os.getenv("PAYMENT_PROVIDER", "marzpay").strip().lower(),
            marzpay_base_url=os.getenv("MARZPAY_BASE_URL", "https://wallet.wearemarz.com").rstrip("/"),
            marzpay_api_key=os.getenv("MARZPAY_API_KEY", ""),
            marzpay_api_secret=os.getenv("MARZPAY_API_SECRET", ""),
            marzpay_callback_url=os.getenv("MARZPAY_CALLBACK_URL"),
            provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "20")),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "3")),
            poll_timeout_seconds=float(os.getenv("POLL_TIMEOUT_SECONDS", "300")),
            stale_payment_minutes=int(os.getenv("STALE_PAYMENT_MINUTES", "60")),
            one_voucher_per_subscriber=_env_bool("VOUCHER_ONE_PER_SUBSCRIBER"),
            enable_test_endpoints=_env_bool("ENABLE_TEST_ENDPOINTS"),
            pay_rate_limit=os.getenv("PAY_RATE_LIMIT", "10/minute"),
        )

    def is_valid_denomination(self, amount) -> bool:
        """Check an amount against the configured denominations.

        Integral floats (``1000.0``) are accepted, strings and bools are not.
        """
        if isinstance(amount, bool):
            return False
        if isinstance(amount, float):
            if not amount.is_integer():
                return False
            amount = int(amount)
        if not isinstance(amount, int):
            return False
        return amount in self.denominations


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings.from_env()
