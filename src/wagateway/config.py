from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .constants import DEFAULT_SESSIONS_PATH, SESSION_DIR_PREFIX


def _env_bool(raw: str | None, default: bool) -> bool:
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(raw: str | None, default: int) -> int:
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(raw: str | None, default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass(slots=True)
class GatewayConfig:
    sessions_path: Path = field(default_factory=lambda: Path(DEFAULT_SESSIONS_PATH))
    auto_start_sessions: bool = False

    max_reconnect_retries: int = 5
    reconnect_interval_s: float = 3.0

    store_flush_delay_s: float = 1.2
    stop_grace_s: float = 5.0

    link_preview_timeout_s: float = 5.0
    media_download_timeout_s: float = 60.0
    media_max_bytes: int = 64 * 1024 * 1024

    log_level: str = "info"
    disabled_callbacks: frozenset[str] = frozenset()

    def session_path(self, session_id: str) -> Path:
        return self.sessions_path / f"{SESSION_DIR_PREFIX}{session_id}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewayConfig:
        """
        Build a config from environment variables.

        Names and units match the wrapper API's deployment settings, so
        `RECONNECT_INTERVAL` is in milliseconds.
        """

        env = os.environ if environ is None else environ
        defaults = cls()

        interval_ms = _env_int(
            env.get("RECONNECT_INTERVAL"), int(defaults.reconnect_interval_s * 1000)
        )
        disabled = frozenset(
            part.strip() for part in (env.get("DISABLED_CALLBACKS") or "").split(",") if part.strip()
        )

        return cls(
            sessions_path=Path(env.get("SESSIONS_PATH") or DEFAULT_SESSIONS_PATH).expanduser(),
            auto_start_sessions=_env_bool(env.get("AUTO_START_SESSIONS"), False),
            max_reconnect_retries=_env_int(
                env.get("MAX_RECONNECT_RETRIES"), defaults.max_reconnect_retries
            ),
            reconnect_interval_s=interval_ms / 1000.0,
            store_flush_delay_s=_env_float(
                env.get("STORE_FLUSH_DELAY_S"), defaults.store_flush_delay_s
            ),
            stop_grace_s=_env_float(env.get("STOP_GRACE_S"), defaults.stop_grace_s),
            link_preview_timeout_s=_env_float(
                env.get("LINK_PREVIEW_TIMEOUT_S"), defaults.link_preview_timeout_s
            ),
            media_download_timeout_s=_env_float(
                env.get("MEDIA_DOWNLOAD_TIMEOUT_S"), defaults.media_download_timeout_s
            ),
            media_max_bytes=_env_int(env.get("MEDIA_MAX_BYTES"), defaults.media_max_bytes),
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).lower(),
            disabled_callbacks=disabled,
        )
