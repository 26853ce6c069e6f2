"""Runtime settings read from ``INFINITEXO_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_STATE_PATH = Path.home() / ".infinitexo" / "state.json"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    server_url: str = "http://127.0.0.1:8000"
    # Base origin for shareable links; falls back to request headers when unset
    public_url: Optional[str] = None
    state_path: Path = DEFAULT_STATE_PATH
    poll_interval: float = 1.5
    create_retry_delay: float = 0.5
    room_ttl: float = 60 * 30  # 30 minutes
    log_level: str = "INFO"


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from the environment (``os.environ`` by default)."""

    env = os.environ if env is None else env
    state_path = env.get("INFINITEXO_STATE_PATH")
    return Settings(
        host=env.get("INFINITEXO_HOST", "0.0.0.0"),
        port=_number(env, "INFINITEXO_PORT", 8000, int),
        server_url=env.get("INFINITEXO_SERVER_URL", "http://127.0.0.1:8000").rstrip("/"),
        public_url=(env.get("INFINITEXO_PUBLIC_URL") or "").rstrip("/") or None,
        state_path=Path(state_path).expanduser() if state_path else DEFAULT_STATE_PATH,
        poll_interval=_number(env, "INFINITEXO_POLL_INTERVAL", 1.5, float),
        create_retry_delay=_number(env, "INFINITEXO_CREATE_RETRY_DELAY", 0.5, float),
        room_ttl=_number(env, "INFINITEXO_ROOM_TTL", 60.0 * 30, float),
        log_level=env.get("INFINITEXO_LOG_LEVEL", "INFO").upper(),
    )
