"""Structured lifecycle events and CSV metrics for the watchlist engine.

Cycle boundaries (tracked-set changes, full loads, price refreshes, teardown)
are reported through :func:`log_event` as one JSON object per log line on the
calling module's logger, so they land in the same console and rotating file
as the rest of the engine's logging.

Timings and counters go through :func:`record_metric`.  Nothing is written
unless ``WATCHLIST_SYNC_METRICS_PATH`` names a CSV file (or
:func:`configure_metrics` is called); an engine embedded in a consumer process
leaves no files behind by default.
"""
from __future__ import annotations

import csv
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

_FALLBACK_LOGGER = logging.getLogger("watchlist_sync.events")
_METRIC_COLUMNS = ("ts", "metric", "value", "labels")


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except TypeError:
        return repr(value)
    return value


def log_event(logger: Optional[logging.Logger], event: str, **fields: Any) -> None:
    """Log ``event`` and ``fields`` as a single sorted JSON object at INFO.

    Values JSON cannot encode (sets, enums, tokens) are written as their
    ``repr``.  ``logger=None`` routes the line to ``watchlist_sync.events``.
    """

    payload: Dict[str, Any] = {"event": event, "ts": time.time()}
    payload.update(fields)
    try:
        line = json.dumps(payload, sort_keys=True)
    except TypeError:
        line = json.dumps({name: _jsonable(value) for name, value in payload.items()}, sort_keys=True)
    (logger or _FALLBACK_LOGGER).info(line)


class _CsvMetricsSink:
    """Append-only CSV file of ``ts, metric, value, labels`` rows."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._header_written = False

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def record(self, metric: str, value: float, *, labels: Optional[Mapping[str, Any]] = None) -> None:
        if self.path is None:
            return
        row = (
            f"{time.time():.6f}",
            metric,
            f"{float(value):.6f}",
            json.dumps(dict(labels or {}), sort_keys=True),
        )
        with self._lock:
            fresh_file = not self.path.exists()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", newline="") as handle:
                writer = csv.writer(handle)
                if fresh_file or not self._header_written:
                    writer.writerow(_METRIC_COLUMNS)
                    self._header_written = True
                writer.writerow(row)


_metrics_sink = _CsvMetricsSink(os.getenv("WATCHLIST_SYNC_METRICS_PATH") or None)


def configure_metrics(path: Optional[str]) -> None:
    """Send metrics to ``path`` from now on; ``None`` turns recording off."""

    global _metrics_sink
    _metrics_sink = _CsvMetricsSink(path)


def record_metric(metric: str, value: float, *, labels: Optional[Mapping[str, Any]] = None) -> None:
    """Append one metric row; a failing sink never interrupts a cycle."""

    try:
        _metrics_sink.record(metric, value, labels=labels)
    except (OSError, TypeError, ValueError):
        _FALLBACK_LOGGER.debug("Could not record metric %s", metric, exc_info=True)


__all__ = ["configure_metrics", "log_event", "record_metric"]
