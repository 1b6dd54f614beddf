from __future__ import annotations

import logging
from typing import Iterable, Protocol

import httpx

logger = logging.getLogger(__name__)

CLOSED_TEXT = "Sorry, we are closed for the day. Please try again tomorrow."


def reassigned_text(start_local: str, end_local: str) -> str:
    return f"The selected time slot has expired, we have selected the following for you: {start_local} - {end_local}"


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")


def broadcast(*, bot_token: str, chat_ids: Iterable[str], text: str, timeout_seconds: float = 20.0) -> None:
    errors: list[tuple[str, Exception]] = []

    for chat_id in chat_ids:
        try:
            send_telegram_message(
                bot_token=bot_token,
                chat_id=chat_id,
                text=text,
                timeout_seconds=timeout_seconds,
            )
        except Exception as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            errors.append((chat_id, e))

    if errors:
        failed = ", ".join([cid for cid, _ in errors])
        raise RuntimeError(f"Failed to send telegram message to some recipients: {failed}")


class Notifier(Protocol):
    def emit_closed_notice(self) -> None: ...

    def emit_reassigned_notice(self, start_local: str, end_local: str) -> None: ...


class TelegramNotifier:
    """Delivers customer-facing notices to every configured chat."""

    def __init__(self, *, bot_token: str, chat_ids: tuple[str, ...], timeout_seconds: float = 20.0) -> None:
        self._bot_token = bot_token
        self._chat_ids = chat_ids
        self._timeout_seconds = timeout_seconds

    def _send(self, text: str) -> None:
        broadcast(
            bot_token=self._bot_token,
            chat_ids=self._chat_ids,
            text=text,
            timeout_seconds=self._timeout_seconds,
        )

    def emit_closed_notice(self) -> None:
        self._send(CLOSED_TEXT)

    def emit_reassigned_notice(self, start_local: str, end_local: str) -> None:
        self._send(reassigned_text(start_local, end_local))
