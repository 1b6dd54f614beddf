from __future__ import annotations

import datetime as dt

import httpx
import pytest

from slotguard.domain import SlotProviderError, TimeWindow
from slotguard.slots import build_slot_set, eligible_slots, fetch_slots, next_eligible_slot, parse_slots

UTC = dt.timezone.utc


def _utc(hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime(2026, 3, 10, hour, minute, tzinfo=UTC)


def test_parse_slots_sorts_and_deduplicates() -> None:
    payload = {
        "slots": [
            {"start": "2026-03-10T15:00:00Z", "end": "2026-03-10T15:30:00Z"},
            {"start": "2026-03-10T14:00:00+00:00", "end": "2026-03-10T14:30:00+00:00"},
            {"start": "2026-03-10T15:00:00Z", "end": "2026-03-10T15:30:00Z"},
        ]
    }

    assert parse_slots(payload) == (
        TimeWindow(_utc(14), _utc(14, 30)),
        TimeWindow(_utc(15), _utc(15, 30)),
    )


def test_parse_slots_accepts_bare_list_and_naive_utc() -> None:
    slots = parse_slots([{"start": "2026-03-10T09:00:00", "end": "2026-03-10T10:00:00"}])
    assert slots == (TimeWindow(_utc(9), _utc(10)),)


def test_parse_slots_keeps_offsets_as_absolute_time() -> None:
    slots = parse_slots([{"start": "2026-03-10T10:00:00-04:00", "end": "2026-03-10T10:30:00-04:00"}])
    assert slots[0].start == _utc(14)


@pytest.mark.parametrize(
    "payload, match",
    [
        ({"slots": [{"start": "2026-03-10T10:00:00Z", "end": "2026-03-10T10:00:00Z"}]}, r"before end"),
        ({"slots": [{"start": "not-a-date", "end": "2026-03-10T10:00:00Z"}]}, r"Invalid slot timestamp"),
        ({"slots": [{"end": "2026-03-10T10:00:00Z"}]}, r"Invalid slot timestamp"),
        ({"slots": "nope"}, r"Unexpected slots payload"),
        ({"slots": ["x"]}, r"Unexpected slot item"),
    ],
)
def test_parse_slots_rejects_malformed_payloads(payload: object, match: str) -> None:
    with pytest.raises(SlotProviderError, match=match):
        parse_slots(payload)


def test_time_window_rejects_empty_interval() -> None:
    with pytest.raises(ValueError):
        TimeWindow(_utc(10), _utc(9))


def test_eligible_slots_keep_windows_starting_at_or_after_cutoff() -> None:
    windows = (
        TimeWindow(_utc(9), _utc(10)),
        TimeWindow(_utc(10), _utc(11)),
        TimeWindow(_utc(11), _utc(12)),
    )

    assert eligible_slots(windows, _utc(10)) == windows[1:]
    assert next_eligible_slot(eligible_slots(windows, _utc(10, 1))) == windows[2]
    assert next_eligible_slot(eligible_slots(windows, _utc(13))) is None


def test_build_slot_set_partitions_slots() -> None:
    windows = (TimeWindow(_utc(9), _utc(10)), TimeWindow(_utc(11), _utc(12)))
    slot_set = build_slot_set(windows, _utc(10, 30))

    assert slot_set.all_slots == windows
    assert slot_set.eligible_slots == (windows[1],)
    assert slot_set.last_slot == windows[1]
    assert slot_set.first_eligible == windows[1]


def test_fetch_slots_reads_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/facilities/7/slots"
        return httpx.Response(200, json={"slots": [{"start": "2026-03-10T09:00:00Z", "end": "2026-03-10T09:30:00Z"}]})

    slots = fetch_slots("https://slots.test/facilities/7/slots", transport=httpx.MockTransport(handler))
    assert slots == (TimeWindow(_utc(9), _utc(9, 30)),)


def test_fetch_slots_raises_on_http_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    with pytest.raises(httpx.HTTPStatusError):
        fetch_slots("https://slots.test/slots", transport=transport)


def test_fetch_slots_rejects_non_json_body() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(SlotProviderError, match=r"non-JSON"):
        fetch_slots("https://slots.test/slots", transport=transport)
