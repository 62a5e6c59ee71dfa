"""
Run the gateway core from a terminal.

Starts the requested sessions (and, with `--auto-start`, every session found
on disk), renders QR codes in the terminal and logs every notification. Stop
with Ctrl+C; sessions are flushed to disk on the way out.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import qrcode

from . import notify
from .config import GatewayConfig
from .logs import configure_logging
from .manager import SessionManager
from .notify import Envelope, NotificationHub

logger = logging.getLogger("wagateway.cli")


def print_qr(qr: str) -> None:
    code = qrcode.QRCode(border=1)
    code.add_data(qr)
    code.make(fit=True)
    code.print_ascii(invert=True)


def _summary(data: Any) -> str:
    text = json.dumps(data, default=str)
    return text if len(text) <= 200 else f"{text[:197]}..."


class TerminalSubscriber:
    """Logs envelopes and prints QR codes as they arrive."""

    def __init__(self, *, show_qr: bool = True) -> None:
        self.show_qr = show_qr
        self._last_qr: dict[str, str] = {}

    def __call__(self, envelope: Envelope) -> None:
        session_id = envelope["sessionId"]
        data_type = envelope["dataType"]
        data = envelope["data"]

        if data_type == notify.QR:
            qr = data.get("qr") if isinstance(data, dict) else None
            if not qr or self._last_qr.get(session_id) == qr:
                return
            self._last_qr[session_id] = qr
            logger.info(
                "session %s: scan this QR in WhatsApp -> Settings -> Linked devices -> Link a device",
                session_id,
            )
            if self.show_qr:
                print_qr(qr)
            return

        logger.info("session %s: %s %s", session_id, data_type, _summary(data))


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="wagateway", description="Multi-session WhatsApp gateway core")
    ap.add_argument("sessions", nargs="*", help="session ids to start")
    ap.add_argument("--sessions-path", type=Path, help="session root (default: $SESSIONS_PATH or ./sessions)")
    ap.add_argument("--auto-start", action="store_true", help="start every session found on disk")
    ap.add_argument("--log-level", help="log level (default: $LOG_LEVEL or info)")
    ap.add_argument("--json-logs", action="store_true", help="emit one JSON object per log line")
    ap.add_argument("--no-qr", action="store_true", help="don't render QR codes in the terminal")
    return ap


def config_from_args(args: argparse.Namespace, base: GatewayConfig | None = None) -> GatewayConfig:
    config = base or GatewayConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.sessions_path is not None:
        overrides["sessions_path"] = args.sessions_path.expanduser()
    if args.auto_start:
        overrides["auto_start_sessions"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level.lower()
    return replace(config, **overrides) if overrides else config


async def run(config: GatewayConfig, session_ids: Sequence[str], *, show_qr: bool = True) -> None:
    hub = NotificationHub(disabled=config.disabled_callbacks)
    hub.subscribe(TerminalSubscriber(show_qr=show_qr))
    manager = SessionManager(config, sink=hub)

    try:
        if config.auto_start_sessions:
            started = await manager.auto_start()
            logger.info("auto-started %d session(s)", len(started))
        for session_id in session_ids:
            await manager.start(session_id)
        if not manager.session_ids():
            logger.warning("no sessions to run; pass session ids or --auto-start")
            return
        await asyncio.Event().wait()
    finally:
        await manager.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    configure_logging(config.log_level, json_output=args.json_logs)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(config, args.sessions, show_qr=not args.no_qr))
    return 0
