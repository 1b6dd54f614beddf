from __future__ import annotations

from unittest.mock import patch

import pytest

from slotguard.telegram_notifier import CLOSED_TEXT, TelegramNotifier


def test_closed_notice_goes_to_every_chat() -> None:
    notifier = TelegramNotifier(bot_token="TEST_TOKEN", chat_ids=("1", "2", "3"))

    with patch("slotguard.telegram_notifier.send_telegram_message") as send_msg:
        notifier.emit_closed_notice()

    assert [c.kwargs["chat_id"] for c in send_msg.call_args_list] == ["1", "2", "3"]
    assert all(c.kwargs["text"] == CLOSED_TEXT for c in send_msg.call_args_list)


def test_reassigned_notice_names_the_new_window() -> None:
    notifier = TelegramNotifier(bot_token="TEST_TOKEN", chat_ids=("1",))

    with patch("slotguard.telegram_notifier.send_telegram_message") as send_msg:
        notifier.emit_reassigned_notice("2:30 PM", "3:00 PM")

    text = send_msg.call_args.kwargs["text"]
    assert "expired" in text
    assert text.endswith("2:30 PM - 3:00 PM")


def test_failed_recipient_does_not_stop_the_others() -> None:
    notifier = TelegramNotifier(bot_token="TEST_TOKEN", chat_ids=("1", "2", "3"))

    def _send(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float) -> None:
        if chat_id == "2":
            raise RuntimeError("blocked by user")

    with patch("slotguard.telegram_notifier.send_telegram_message", side_effect=_send) as send_msg:
        with pytest.raises(RuntimeError, match=r"some recipients: 2"):
            notifier.emit_closed_notice()

    assert send_msg.call_count == 3
