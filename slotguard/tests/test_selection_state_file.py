from __future__ import annotations

import datetime as dt

from slotguard.domain import NOW, Actions, EngineState, FulfillmentMethod, SetCountdown, SetSelection
from slotguard.state_file import SelectionState, apply_actions, load_state, save_state

UTC = dt.timezone.utc


def test_missing_file_gives_default_state(tmp_path) -> None:
    state = load_state(str(tmp_path / "absent.json"))
    assert state == SelectionState()
    assert state.method is FulfillmentMethod.DELIVERY


def test_corrupted_file_gives_default_state(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_state(str(path)) == SelectionState()


def test_non_utf8_file_gives_default_state(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_bytes(b"\xff\xfe\x00garbage")
    assert load_state(str(path)) == SelectionState()


def test_state_survives_save_and_load(tmp_path) -> None:
    path = str(tmp_path / "nested" / "state.json")
    state = SelectionState(
        selection=dt.datetime(2026, 3, 10, 18, 30, tzinfo=UTC),
        countdown_ms=1_200_000,
        method=FulfillmentMethod.PICKUP,
        previous_method=FulfillmentMethod.DELIVERY,
        closed_notice_sent=True,
        updated_at=dt.datetime(2026, 3, 10, 18, 10, tzinfo=UTC),
        fetch_failing=True,
    )

    save_state(path, state)
    assert load_state(path) == state


def test_now_selection_is_stored_as_sentinel(tmp_path) -> None:
    path = str(tmp_path / "state.json")
    save_state(path, SelectionState(selection=NOW))
    assert load_state(path).selection is NOW


def test_unparseable_fields_fall_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        '{"selection": "yesterday-ish", "countdown_ms": "x", "method": "drone", "previous_method": "teleport"}',
        encoding="utf-8",
    )

    state = load_state(str(path))
    assert state.selection is None
    assert state.countdown_ms == 0
    assert state.method is FulfillmentMethod.DELIVERY
    assert state.previous_method is None


def test_apply_actions_takes_last_proposed_values() -> None:
    state = SelectionState(selection=dt.datetime(2026, 3, 10, 14, tzinfo=UTC), countdown_ms=10)
    actions = Actions(
        EngineState.NO_SLOTS,
        (
            SetSelection(dt.datetime(2026, 3, 10, 15, tzinfo=UTC)),
            SetCountdown(500),
            SetSelection(NOW),
            SetCountdown(0),
        ),
    )

    updated = apply_actions(state, actions)
    assert updated.selection is NOW
    assert updated.countdown_ms == 0


def test_apply_actions_without_changes_keeps_state() -> None:
    state = SelectionState(selection=dt.datetime(2026, 3, 10, 14, tzinfo=UTC), countdown_ms=10)
    assert apply_actions(state, Actions(EngineState.NORMAL)) == state
