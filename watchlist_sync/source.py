"""Data source capability consumed by the loader and refresher.

The engine only needs two operations from upstream: a full fetch for one key
and a batched fetch of the volatile fields for several keys.  Anything that
implements :class:`DataSource` works; :class:`StockApiSource` talks to the
stock REST API over HTTP.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import requests

from config import DEFAULT_API_BASE_URL
from log_utils import setup_logger
from watchlist_sync.cache import Record, normalize_key
from watchlist_sync.errors import NotFoundError, TransientFetchError

logger = setup_logger(__name__)


@dataclass(frozen=True)
class PricePatch:
    """Volatile field values for one key returned by a batched price fetch."""

    key: str
    fields: Mapping[str, Any] = field(default_factory=dict)


class DataSource(Protocol):
    async def fetch_full(self, key: str) -> Record:
        ...

    async def fetch_prices(self, keys: Sequence[str]) -> Sequence[PricePatch]:
        ...


# flat volatile key -> path inside the API record
_VOLATILE_PATHS: Dict[str, tuple[tuple[str, ...], ...]] = {
    "current_price": (("currentPrice",), ("priceData", "currentPrice")),
    "change": (("tradingData", "dailyChange"),),
    "change_percent": (("tradingData", "dailyChangePercent"),),
    "volume": (("tradingData", "volume"),),
    "day_high": (("priceData", "dayHigh"),),
    "day_low": (("priceData", "dayLow"),),
}


def _dig(payload: Mapping[str, Any], path: Sequence[str]) -> Any:
    value: Any = payload
    for part in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def extract_volatile(payload: Mapping[str, Any], *, include_missing: bool = True) -> Dict[str, Any]:
    """Lift the price-like values out of an API record into flat keys.

    With ``include_missing=False`` fields absent upstream are left out, so the
    result can be merged over a loaded record without blanking anything.
    """

    values: Dict[str, Any] = {}
    for name, paths in _VOLATILE_PATHS.items():
        for path in paths:
            value = _dig(payload, path)
            if value is not None:
                values[name] = value
                break
        else:
            if include_missing:
                values[name] = None
    return values


def _without_path(payload: Mapping[str, Any], path: Sequence[str]) -> Dict[str, Any]:
    result = dict(payload)
    head, rest = path[0], path[1:]
    if not rest:
        result.pop(head, None)
    elif isinstance(result.get(head), Mapping):
        result[head] = _without_path(result[head], rest)
    return result


def flatten_record(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Move the volatile values of an API record to their flat keys.

    The nested originals (``currentPrice``, ``tradingData.volume`` ...) are
    removed so price patches, which only touch the flat keys, leave no stale
    copy behind.
    """

    record: Dict[str, Any] = dict(payload)
    for paths in _VOLATILE_PATHS.values():
        for path in paths:
            record = _without_path(record, path)
    record.update(extract_volatile(payload))
    return record


class StockApiSource:
    """HTTP data source for the stock API (``/stocks/{symbol}``, ``/stocks/multiple``)."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        *,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self._session = session or requests.Session()
        self._session.headers.setdefault("Content-Type", "application/json")

    def close(self) -> None:
        self._session.close()

    def _unwrap(self, response: requests.Response, key: Optional[str]) -> Any:
        status = response.status_code
        if status == 404:
            raise NotFoundError(f"{key or 'request'} not found upstream", key=key)
        if status == 429 or status >= 500:
            raise TransientFetchError(f"upstream returned HTTP {status}", key=key)
        if status >= 400:
            # other client errors will not heal by themselves
            raise NotFoundError(f"upstream rejected request with HTTP {status}", key=key)
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientFetchError(f"malformed JSON from upstream: {exc}", key=key) from exc
        if isinstance(body, Mapping) and "data" in body:
            return body["data"]
        return body

    def _get_full(self, key: str) -> Record:
        url = f"{self.base_url}/stocks/{key}"
        try:
            response = self._session.get(url, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientFetchError(f"network error fetching {key}: {exc}", key=key) from exc
        except requests.RequestException as exc:
            raise TransientFetchError(f"request failed for {key}: {exc}", key=key) from exc
        data = self._unwrap(response, key)
        if not isinstance(data, Mapping) or not data:
            raise NotFoundError(f"empty record for {key}", key=key)
        record = flatten_record(data)
        record.setdefault("symbol", key)
        return record

    def _post_prices(self, keys: Sequence[str]) -> List[PricePatch]:
        url = f"{self.base_url}/stocks/multiple"
        try:
            response = self._session.post(url, json={"symbols": list(keys)}, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientFetchError(f"network error fetching prices: {exc}") from exc
        except requests.RequestException as exc:
            raise TransientFetchError(f"price request failed: {exc}") from exc
        data = self._unwrap(response, None)
        if not isinstance(data, list):
            raise TransientFetchError("price response is not a list")
        patches: List[PricePatch] = []
        for item in data:
            if not isinstance(item, Mapping) or not item.get("symbol"):
                continue
            fields = extract_volatile(item, include_missing=False)
            patches.append(PricePatch(key=normalize_key(item["symbol"]), fields=fields))
        return patches

    async def fetch_full(self, key: str) -> Record:
        return await asyncio.to_thread(self._get_full, normalize_key(key))

    async def fetch_prices(self, keys: Sequence[str]) -> Sequence[PricePatch]:
        normalized = [normalize_key(key) for key in keys]
        if not normalized:
            return []
        return await asyncio.to_thread(self._post_prices, normalized)


__all__ = ["DataSource", "PricePatch", "StockApiSource", "extract_volatile", "flatten_record"]
