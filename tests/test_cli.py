import argparse

import pytest

from watchlist_sync import cli
from watchlist_sync.source import PricePatch


class _StubApiSource:
    instances = []

    def __init__(self, base_url, *, timeout=15.0):
        self.base_url = base_url
        self.timeout = timeout
        self.closed = False
        _StubApiSource.instances.append(self)

    async def fetch_full(self, key):
        return {"symbol": key, "current_price": 42.0, "volume": 7}

    async def fetch_prices(self, keys):
        return [PricePatch(key, {"current_price": 43.0}) for key in keys]

    def close(self):
        self.closed = True


def test_parse_symbols():
    assert cli._parse_symbols(" aapl, msft ,,nvda") == ["AAPL", "MSFT", "NVDA"]
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_symbols(" , ")


def test_parser_defaults_and_overrides():
    args = cli.build_parser().parse_args(
        ["--symbols", "AAPL,MSFT", "--api-url", "http://api.test/api", "--batch-size", "2"]
    )

    assert args.symbols == ["AAPL", "MSFT"]
    assert args.api_url == "http://api.test/api"
    assert args.duration == 60.0
    assert args.batch_size == 2
    assert args.refresh_interval_ms is None
    assert args.rate is None


def test_main_prints_loaded_frame(monkeypatch, capsys):
    monkeypatch.setenv("WATCHLIST_FULL_LOAD_DELAY_MS", "0")
    monkeypatch.setattr(cli, "StockApiSource", _StubApiSource)
    _StubApiSource.instances.clear()

    code = cli.main(["--symbols", "aapl,msft", "--api-url", "http://api.test/api", "--duration", "0.2"])

    out = capsys.readouterr().out
    assert code == 0
    assert "AAPL" in out and "MSFT" in out
    assert "loaded 2/2" in out
    source = _StubApiSource.instances[0]
    assert source.base_url == "http://api.test/api"
    assert source.closed is True


def test_main_with_rate_cap_loads_every_symbol(monkeypatch, capsys):
    monkeypatch.setattr(cli, "StockApiSource", _StubApiSource)
    _StubApiSource.instances.clear()

    code = cli.main(["--symbols", "aapl,msft", "--rate", "200", "--duration", "0.3"])

    out = capsys.readouterr().out
    assert code == 0
    assert "loaded 2/2" in out
