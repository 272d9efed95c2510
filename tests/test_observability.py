import csv
import json
import logging

import observability


def test_log_event_emits_sorted_json(caplog):
    logger = logging.getLogger("test_observability_events")

    with caplog.at_level(logging.INFO, logger="test_observability_events"):
        observability.log_event(logger, "full_load_finished", epoch=4, loaded=2, keys={"AAPL"})

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "full_load_finished"
    assert payload["epoch"] == 4
    # non-serialisable values fall back to repr
    assert payload["keys"] == repr({"AAPL"})
    assert "ts" in payload


def test_metrics_disabled_until_configured(tmp_path):
    target = tmp_path / "metrics.csv"
    observability.configure_metrics(None)
    observability.record_metric("full_fetch_ms", 12.0)
    assert not target.exists()

    observability.configure_metrics(str(target))
    try:
        observability.record_metric("full_fetch_ms", 12.5, labels={"key": "AAPL"})
        observability.record_metric("price_batch_ms", 3.0)
    finally:
        observability.configure_metrics(None)

    with target.open() as handle:
        rows = list(csv.DictReader(handle))
    assert [row["metric"] for row in rows] == ["full_fetch_ms", "price_batch_ms"]
    assert float(rows[0]["value"]) == 12.5
    assert json.loads(rows[0]["labels"]) == {"key": "AAPL"}


def test_event_without_logger_goes_to_events_channel(caplog):
    with caplog.at_level(logging.INFO, logger="watchlist_sync.events"):
        observability.log_event(None, "tracked_set_changed", total=3)

    record = caplog.records[-1]
    assert record.name == "watchlist_sync.events"
    assert json.loads(record.getMessage())["total"] == 3


def test_metrics_header_written_once_per_file(tmp_path):
    target = tmp_path / "nested" / "metrics.csv"
    observability.configure_metrics(str(target))
    try:
        for value in (1.0, 2.0, 3.0):
            observability.record_metric("price_refresh_patched", value)
    finally:
        observability.configure_metrics(None)

    lines = target.read_text().splitlines()
    assert lines[0] == "ts,metric,value,labels"
    assert len(lines) == 4
