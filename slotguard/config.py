from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from slotguard.clock import validate_tz


def _parse_chat_id(p: str, *, name: str) -> str:
    # Telegram allows numeric IDs; groups/supergroups can be negative.
    try:
        int(p)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {p!r}. Expected integer chat id.") from e

    if p == "0":
        raise RuntimeError(f"Invalid {name} value: '0' is not a valid chat id")
    return p


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        _parse_chat_id(p, name="TELEGRAM_CHAT_ID")
        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise RuntimeError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    facility_tz: str
    slots_url: str

    telegram_bot_token: str
    telegram_chat_ids: tuple[str, ...]
    # Operational messages (start/stop/errors) go here, never to customers.
    telegram_admin_chat_id: str | None = None

    # Lead time for delivery orders; pickup uses a fixed buffer.
    delivery_time_buffer_minutes: int = 30

    tick_interval_seconds: int = 30

    # How many times a slot fetch is retried before the tick runs on stale data.
    fetch_retry_attempts: int = 2
    http_timeout_seconds: float = 20.0

    # Where we store the selection, countdown and order method
    state_file: str = "state.json"


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _int_env(name: str, default: str, *, minimum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected integer.") from e
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    admin_raw = (os.getenv("TELEGRAM_ADMIN_CHAT_ID") or "").strip()
    admin_chat_id = _parse_chat_id(admin_raw, name="TELEGRAM_ADMIN_CHAT_ID") if admin_raw else None

    timeout_raw = os.getenv("HTTP_TIMEOUT_SECONDS", "20")
    try:
        http_timeout_seconds = float(timeout_raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid HTTP_TIMEOUT_SECONDS value: {timeout_raw!r}") from e
    if http_timeout_seconds <= 0:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be > 0")

    return Settings(
        facility_tz=validate_tz(_require("FACILITY_TZ")),
        slots_url=_require("SLOTS_URL"),
        telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
        telegram_chat_ids=_parse_telegram_chat_ids(_require("TELEGRAM_CHAT_ID")),
        telegram_admin_chat_id=admin_chat_id,
        delivery_time_buffer_minutes=_int_env("DELIVERY_TIME_BUFFER_MINUTES", "30", minimum=0),
        tick_interval_seconds=_int_env("TICK_INTERVAL_SECONDS", "30", minimum=1),
        fetch_retry_attempts=_int_env("FETCH_RETRY_ATTEMPTS", "2", minimum=1),
        http_timeout_seconds=http_timeout_seconds,
        state_file=os.getenv("STATE_FILE", "state.json"),
    )
