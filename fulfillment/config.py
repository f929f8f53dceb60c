"""
Service configuration.

Values are read from the environment, after loading a `.env` file from the
project root. Required Supabase credentials are only checked when the
Supabase storage backend is selected.

Environment variables:
- STORAGE_BACKEND: "supabase" (default) or "memory"
- SUPABASE_URL / SUPABASE_KEY: Supabase project URL and server-side API key
- PINCODE_CACHE_TTL_SECONDS, AVAILABILITY_CACHE_TTL_SECONDS: the two cache TTL classes
- CACHE_MAX_ENTRIES, CACHE_SWEEP_INTERVAL_SECONDS
- BATCH_WINDOW_MS, BATCH_MAX_SIZE: request coalescing for batched lookups
- PAYMENT_TIMEOUT_SECONDS: bounded wait for the payment signal
- RESERVATION_MAX_AGE_SECONDS: held reservations older than this are swept
- CHECKOUT_SWEEP_INTERVAL_SECONDS: how often the API times out unpaid checkouts,
  sweeps stale reservations and evicts finished checkouts (0 disables it)
- CHECKOUT_RETENTION_SECONDS: how long finished checkouts stay in memory
- LOG_LEVEL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_DEFAULT_ENV_FILE = Path(__file__).parent.parent / ".env"

STORAGE_SUPABASE = "supabase"
STORAGE_MEMORY = "memory"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(
            f"Invalid environment variable: {name}={raw!r}. Expected an integer."
        ) from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(
            f"Invalid environment variable: {name}={raw!r}. Expected a number."
        ) from None


@dataclass(frozen=True, slots=True)
class Settings:
    storage_backend: str = STORAGE_SUPABASE
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    pincode_cache_ttl_seconds: int = 60 * 60
    availability_cache_ttl_seconds: int = 15 * 60
    cache_max_entries: int = 1000
    cache_sweep_interval_seconds: int = 5 * 60

    batch_window_ms: int = 50
    batch_max_size: int = 10

    payment_timeout_seconds: int = 15 * 60
    reservation_max_age_seconds: int = 30 * 60
    checkout_sweep_interval_seconds: float = 30
    checkout_retention_seconds: int = 60 * 60

    log_level: str = "INFO"

    @staticmethod
    def from_env(env_file: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path=env_file or _DEFAULT_ENV_FILE)

        backend = (os.getenv("STORAGE_BACKEND") or STORAGE_SUPABASE).strip().lower()
        if backend not in (STORAGE_SUPABASE, STORAGE_MEMORY):
            raise RuntimeError(
                f"Invalid environment variable: STORAGE_BACKEND={backend!r}. "
                f"Use '{STORAGE_SUPABASE}' or '{STORAGE_MEMORY}'."
            )

        supabase_url = os.getenv("SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_KEY")
        if backend == STORAGE_SUPABASE:
            if not supabase_url:
                raise RuntimeError(
                    "Missing environment variable: SUPABASE_URL. "
                    "Set SUPABASE_URL to your Supabase project URL."
                )
            if not supabase_key:
                raise RuntimeError(
                    "Missing environment variable: SUPABASE_KEY. "
                    "Set SUPABASE_KEY to your Supabase API key."
                )

        return Settings(
            storage_backend=backend,
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            pincode_cache_ttl_seconds=_int_env("PINCODE_CACHE_TTL_SECONDS", 60 * 60),
            availability_cache_ttl_seconds=_int_env("AVAILABILITY_CACHE_TTL_SECONDS", 15 * 60),
            cache_max_entries=_int_env("CACHE_MAX_ENTRIES", 1000),
            cache_sweep_interval_seconds=_int_env("CACHE_SWEEP_INTERVAL_SECONDS", 5 * 60),
            batch_window_ms=_int_env("BATCH_WINDOW_MS", 50),
            batch_max_size=_int_env("BATCH_MAX_SIZE", 10),
            payment_timeout_seconds=_int_env("PAYMENT_TIMEOUT_SECONDS", 15 * 60),
            reservation_max_age_seconds=_int_env("RESERVATION_MAX_AGE_SECONDS", 30 * 60),
            checkout_sweep_interval_seconds=_float_env("CHECKOUT_SWEEP_INTERVAL_SECONDS", 30),
            checkout_retention_seconds=_int_env("CHECKOUT_RETENTION_SECONDS", 60 * 60),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )


__all__ = ["STORAGE_MEMORY", "STORAGE_SUPABASE", "Settings"]
