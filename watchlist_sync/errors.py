"""Failure taxonomy raised by watchlist data sources."""

from __future__ import annotations

from typing import Optional


class FetchError(Exception):
    """Base class for data source failures."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class TransientFetchError(FetchError):
    """Network, timeout or rate-limit failure; the next cycle may succeed."""


class NotFoundError(FetchError):
    """The upstream source does not know the requested key."""


__all__ = ["FetchError", "NotFoundError", "TransientFetchError"]
