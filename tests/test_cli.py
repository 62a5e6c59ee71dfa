from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from wagateway import cli
from wagateway.config import GatewayConfig
from wagateway.logs import JsonFormatter, configure_logging


def test_args_override_config() -> None:
    args = cli.build_parser().parse_args(["a", "b", "--sessions-path", "/tmp/s", "--auto-start", "--log-level", "DEBUG"])

    config = cli.config_from_args(args, GatewayConfig.from_env({}))

    assert args.sessions == ["a", "b"]
    assert config.sessions_path == Path("/tmp/s")
    assert config.auto_start_sessions is True
    assert config.log_level == "debug"


def test_no_args_keep_base() -> None:
    base = GatewayConfig.from_env({})

    assert cli.config_from_args(cli.build_parser().parse_args([]), base) is base


def test_terminal_subscriber_prints_each_qr_once(monkeypatch) -> None:
    printed = []
    monkeypatch.setattr(cli, "print_qr", printed.append)
    sub = cli.TerminalSubscriber()

    for qr in ("Q1", "Q1", "Q2"):
        sub({"sessionId": "s1", "dataType": "qr", "data": {"qr": qr}})
    sub({"sessionId": "s2", "dataType": "qr", "data": {"qr": "Q1"}})

    assert printed == ["Q1", "Q2", "Q1"]


def test_terminal_subscriber_logs_events(caplog) -> None:
    sub = cli.TerminalSubscriber(show_qr=False)

    with caplog.at_level(logging.INFO, logger="wagateway.cli"):
        sub({"sessionId": "s1", "dataType": "message", "data": {"body": "x" * 500}})

    (record,) = caplog.records
    assert "s1" in record.getMessage()
    assert record.getMessage().endswith("...")


@pytest.mark.asyncio
async def test_run_without_sessions_returns(tmp_path) -> None:
    await cli.run(GatewayConfig(sessions_path=tmp_path), [], show_qr=False)


def test_json_formatter() -> None:
    record = logging.LogRecord("wagateway.manager", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.session_id = "s1"

    out = json.loads(JsonFormatter().format(record))

    assert out["message"] == "hello world"
    assert out["sessionId"] == "s1"
    assert out["level"] == "INFO"


def test_configure_logging_replaces_handler() -> None:
    configure_logging("debug")
    logger = configure_logging("warning", json_output=True)
    try:
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)
        assert logger.level == logging.WARNING
    finally:
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
