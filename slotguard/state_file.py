from __future__ import annotations

import datetime as dt
import json
import os
import tempfile
from dataclasses import dataclass, replace
from zoneinfo import ZoneInfo

from slotguard.clock import ensure_aware
from slotguard.domain import NOW, Actions, FulfillmentMethod, Selection


@dataclass(frozen=True)
class SelectionState:
    """What the selection store keeps between runs."""

    selection: Selection | None = None
    countdown_ms: int = 0
    method: FulfillmentMethod = FulfillmentMethod.DELIVERY
    previous_method: FulfillmentMethod | None = None
    closed_notice_sent: bool = False
    # When countdown_ms was last written; the worker decays it from here.
    updated_at: dt.datetime | None = None
    # Last slots fetch failed; the admin is alerted only when this flips on.
    fetch_failing: bool = False


def _selection_to_json(selection: Selection | None) -> str | None:
    if selection is None:
        return None
    if selection is NOW:
        return NOW.value
    return ensure_aware(selection).isoformat()


def parse_selection(raw: object, *, tz_name: str | None = None) -> Selection | None:
    """Parse a stored or typed selection.

    Naive times are facility wall time when tz_name is given, UTC otherwise.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if text.lower() == NOW.value:
        return NOW
    parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None and tz_name:
        return parsed.replace(tzinfo=ZoneInfo(tz_name)).astimezone(dt.timezone.utc)
    return ensure_aware(parsed)


def _parse_method(raw: object, default: FulfillmentMethod | None) -> FulfillmentMethod | None:
    try:
        return FulfillmentMethod(str(raw).lower())
    except ValueError:
        return default


def load_state(path: str) -> SelectionState:
    if not os.path.exists(path):
        return SelectionState()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Corrupted state shouldn't brick the worker; start fresh.
        return SelectionState()
    if not isinstance(raw, dict):
        return SelectionState()

    try:
        selection = parse_selection(raw.get("selection"))
    except ValueError:
        selection = None

    try:
        countdown_ms = int(raw.get("countdown_ms", 0))
    except (TypeError, ValueError):
        countdown_ms = 0

    try:
        updated_raw = raw.get("updated_at")
        updated_at = ensure_aware(dt.datetime.fromisoformat(updated_raw)) if updated_raw else None
    except (TypeError, ValueError):
        updated_at = None

    previous_raw = raw.get("previous_method")
    return SelectionState(
        selection=selection,
        countdown_ms=countdown_ms,
        method=_parse_method(raw.get("method"), FulfillmentMethod.DELIVERY),
        previous_method=_parse_method(previous_raw, None) if previous_raw is not None else None,
        closed_notice_sent=bool(raw.get("closed_notice_sent", False)),
        updated_at=updated_at,
        fetch_failing=bool(raw.get("fetch_failing", False)),
    )


def save_state(path: str, state: SelectionState) -> None:
    data = {
        "selection": _selection_to_json(state.selection),
        "countdown_ms": state.countdown_ms,
        "method": state.method.value,
        "previous_method": state.previous_method.value if state.previous_method else None,
        "closed_notice_sent": state.closed_notice_sent,
        "updated_at": ensure_aware(state.updated_at).isoformat() if state.updated_at else None,
        "fetch_failing": state.fetch_failing,
    }

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)


def apply_actions(state: SelectionState, actions: Actions) -> SelectionState:
    selection = actions.selection
    countdown_ms = actions.countdown_ms
    if selection is not None:
        state = replace(state, selection=selection)
    if countdown_ms is not None:
        state = replace(state, countdown_ms=countdown_ms)
    return state
