"""Central configuration loader for environment variables."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

# Load environment variables once when this module is imported.
load_dotenv()

import os


def _clean(value: str | None) -> str:
    """Return ``value`` without inline comments or surrounding whitespace."""

    if not value:
        return ""
    return value.split("#", 1)[0].strip()


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------
def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(_clean(raw))
    except (TypeError, ValueError):
        return float(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(float(_clean(raw)))
    except (TypeError, ValueError):
        return int(default)


# ---------------------------------------------------------------------------
# Watchlist synchronisation knobs
# ---------------------------------------------------------------------------

DEFAULT_API_BASE_URL = "http://localhost:5000/api"

# Price-like fields refreshed between full loads.  Everything else on a record
# (fundamentals, analysis, financial statements) only changes on a full fetch.
DEFAULT_VOLATILE_FIELDS: Tuple[str, ...] = (
    "current_price",
    "change",
    "change_percent",
    "volume",
    "day_high",
    "day_low",
)


@dataclass(frozen=True)
class SyncSettings:
    """Tunables for the watchlist loader, refresher and coordinator."""

    full_load_inter_item_delay_ms: int = 500
    refresh_interval_ms: int = 30_000
    refresh_batch_size: int = 5
    refresh_batch_delay_ms: int = 500
    full_cache_ttl_ms: int = 300_000
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = 15.0
    volatile_fields: Tuple[str, ...] = field(default=DEFAULT_VOLATILE_FIELDS)

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        object.__setattr__(
            self, "full_load_inter_item_delay_ms", max(0, int(self.full_load_inter_item_delay_ms))
        )
        object.__setattr__(self, "refresh_interval_ms", max(1000, int(self.refresh_interval_ms)))
        object.__setattr__(self, "refresh_batch_size", max(1, int(self.refresh_batch_size)))
        object.__setattr__(self, "refresh_batch_delay_ms", max(0, int(self.refresh_batch_delay_ms)))
        object.__setattr__(self, "full_cache_ttl_ms", max(0, int(self.full_cache_ttl_ms)))
        object.__setattr__(self, "request_timeout", max(1.0, float(self.request_timeout)))
        object.__setattr__(self, "volatile_fields", tuple(self.volatile_fields))

    @property
    def full_load_inter_item_delay(self) -> float:
        return self.full_load_inter_item_delay_ms / 1000.0

    @property
    def refresh_interval(self) -> float:
        return self.refresh_interval_ms / 1000.0

    @property
    def refresh_batch_delay(self) -> float:
        return self.refresh_batch_delay_ms / 1000.0

    @property
    def full_cache_ttl(self) -> float:
        return self.full_cache_ttl_ms / 1000.0


def _parse_fields(raw: str | None) -> Tuple[str, ...]:
    cleaned = _clean(raw)
    if not cleaned:
        return DEFAULT_VOLATILE_FIELDS
    fields = tuple(part.strip() for part in cleaned.split(",") if part.strip())
    return fields or DEFAULT_VOLATILE_FIELDS


def load_sync_settings() -> SyncSettings:
    """Load watchlist synchronisation settings from environment variables."""

    return SyncSettings(
        full_load_inter_item_delay_ms=_env_int("WATCHLIST_FULL_LOAD_DELAY_MS", 500),
        refresh_interval_ms=_env_int("WATCHLIST_REFRESH_INTERVAL_MS", 30_000),
        refresh_batch_size=_env_int("WATCHLIST_REFRESH_BATCH_SIZE", 5),
        refresh_batch_delay_ms=_env_int("WATCHLIST_REFRESH_BATCH_DELAY_MS", 500),
        full_cache_ttl_ms=_env_int("WATCHLIST_FULL_CACHE_TTL_MS", 300_000),
        api_base_url=_clean(os.getenv("WATCHLIST_API_URL")) or DEFAULT_API_BASE_URL,
        request_timeout=_env_float("WATCHLIST_REQUEST_TIMEOUT", 15.0),
        volatile_fields=_parse_fields(os.getenv("WATCHLIST_VOLATILE_FIELDS")),
    )


def log_quiet() -> bool:
    """Return ``True`` when per-key progress chatter should be filtered out."""

    return _env_bool("WATCHLIST_SYNC_LOG_QUIET", True)


__all__ = [
    "DEFAULT_API_BASE_URL",
    "DEFAULT_VOLATILE_FIELDS",
    "SyncSettings",
    "load_sync_settings",
    "log_quiet",
]
