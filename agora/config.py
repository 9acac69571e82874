"""
Agora configuration.

Settings come from AGORA_* environment variables, with a local .env file
loaded first when present.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _csv(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Payments
    require_payment: bool = False
    payment_skew_seconds: int = 300
    payment_networks: list[str] = field(default_factory=lambda: ["base-sepolia", "solana-devnet"])
    pay_to_evm: str | None = None
    pay_to_solana: str | None = None

    # Identity
    identity_skew_seconds: int = 300

    # Bookings and liveness
    booking_ttl_seconds: int = 3600
    stale_threshold_seconds: int = 3600
    evict_stale: bool = False
    sweep_interval_seconds: int = 60

    # Persistence
    supabase_url: str | None = None
    supabase_key: str | None = None
    supabase_table: str = "agents"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            host=os.getenv("AGORA_HOST", "0.0.0.0"),
            port=int(os.getenv("AGORA_PORT", "8000")),
            log_level=os.getenv("AGORA_LOG_LEVEL", "INFO"),
            cors_origins=_csv("AGORA_CORS_ORIGINS", "*"),
            require_payment=_flag("AGORA_REQUIRE_PAYMENT"),
            payment_skew_seconds=int(os.getenv("AGORA_PAYMENT_SKEW_SECONDS", "300")),
            payment_networks=_csv("AGORA_PAYMENT_NETWORKS", "base-sepolia,solana-devnet"),
            pay_to_evm=os.getenv("AGORA_PAY_TO_EVM") or None,
            pay_to_solana=os.getenv("AGORA_PAY_TO_SOLANA") or None,
            identity_skew_seconds=int(os.getenv("AGORA_IDENTITY_SKEW_SECONDS", "300")),
            booking_ttl_seconds=int(os.getenv("AGORA_BOOKING_TTL_SECONDS", "3600")),
            stale_threshold_seconds=int(os.getenv("AGORA_STALE_THRESHOLD_SECONDS", "3600")),
            evict_stale=_flag("AGORA_EVICT_STALE"),
            sweep_interval_seconds=int(os.getenv("AGORA_SWEEP_INTERVAL_SECONDS", "60")),
            supabase_url=os.getenv("AGORA_SUPABASE_URL") or None,
            supabase_key=os.getenv("AGORA_SUPABASE_KEY") or None,
            supabase_table=os.getenv("AGORA_SUPABASE_TABLE", "agents"),
        )

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("httpx").setLevel(logging.WARNING)
