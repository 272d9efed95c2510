import logging
from importlib import reload

import log_utils


def _reset_logger(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        try:
            handler.close()
        except Exception:
            pass


def test_setup_logger_filters_progress_chatter(tmp_path, monkeypatch):
    # Ensure a clean module state for the logger initialisation.
    module = reload(log_utils)
    monkeypatch.setattr(module, "LOG_FILE", str(tmp_path / "watchlist_sync.log"), raising=False)
    monkeypatch.setenv("WATCHLIST_SYNC_LOG_QUIET", "1")

    logger = module.setup_logger("test_log_utils_filter")

    # ``setup_logger`` should attach the shared filter to both handlers.
    assert len(logger.handlers) == 2
    for handler in logger.handlers:
        assert module._NOISE_FILTER in handler.filters

    lifecycle_record = logger.makeRecord(
        logger.name, logging.INFO, __file__, 0, "Full load started (epoch=3, missing=2/5)", (), None
    )
    noisy_record = logger.makeRecord(
        logger.name, logging.INFO, __file__, 0, "Full fetch OK for %s", ("AAPL",), None
    )
    failure_record = logger.makeRecord(
        logger.name, logging.WARNING, __file__, 0, "Price batch OK but Timer tick slow", (), None
    )

    assert module._NOISE_FILTER.filter(lifecycle_record) is True
    assert module._NOISE_FILTER.filter(noisy_record) is False
    assert module._NOISE_FILTER.filter(failure_record) is True

    monkeypatch.setenv("WATCHLIST_SYNC_LOG_QUIET", "0")
    assert module._NOISE_FILTER.filter(noisy_record) is True

    _reset_logger(logger)


def test_read_logs_returns_tail(tmp_path, monkeypatch):
    log_file = tmp_path / "watchlist_sync.log"
    log_file.write_text("one\ntwo\nthree\n")
    monkeypatch.setattr(log_utils, "LOG_FILE", str(log_file))

    assert log_utils.read_logs(tail=2) == "two\nthree\n"
    assert log_utils.read_logs(tail=0) == "one\ntwo\nthree\n"

    monkeypatch.setattr(log_utils, "LOG_FILE", str(tmp_path / "missing.log"))
    assert log_utils.read_logs() == ""
