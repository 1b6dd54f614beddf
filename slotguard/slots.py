from __future__ import annotations

import datetime as dt
from typing import Any, Iterable

import httpx

from slotguard.clock import ensure_aware
from slotguard.domain import SlotProviderError, SlotSet, TimeWindow


def _parse_instant(raw: Any) -> dt.datetime:
    if not isinstance(raw, str) or not raw.strip():
        raise SlotProviderError(f"Invalid slot timestamp: {raw!r}")
    try:
        return ensure_aware(dt.datetime.fromisoformat(raw.strip()))
    except ValueError as e:
        raise SlotProviderError(f"Invalid slot timestamp: {raw!r}") from e


def parse_slots(payload: Any) -> tuple[TimeWindow, ...]:
    """Turn the provider payload into a sorted, de-duplicated tuple of windows.

    Accepts {"slots": [...]} or a bare list of {"start": ..., "end": ...}.
    """
    items = payload.get("slots") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise SlotProviderError(f"Unexpected slots payload: {type(payload).__name__}")

    windows: set[TimeWindow] = set()
    for item in items:
        if not isinstance(item, dict):
            raise SlotProviderError(f"Unexpected slot item: {item!r}")
        start = _parse_instant(item.get("start"))
        end = _parse_instant(item.get("end"))
        if start >= end:
            raise SlotProviderError(f"Slot start must be before end: {item!r}")
        windows.add(TimeWindow(start=start, end=end))

    return tuple(sorted(windows))


def fetch_slots(
    url: str,
    *,
    timeout_seconds: float = 20.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[TimeWindow, ...]:
    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        r = client.get(url)
        r.raise_for_status()
        try:
            data = r.json()
        except ValueError as e:
            raise SlotProviderError(f"Slots endpoint returned non-JSON body: {e}") from e
    return parse_slots(data)


def eligible_slots(all_slots: Iterable[TimeWindow], earliest: dt.datetime) -> tuple[TimeWindow, ...]:
    # A window is still bookable if it does not start before the lead-time cutoff.
    return tuple(w for w in all_slots if w.start >= earliest)


def next_eligible_slot(eligible: Iterable[TimeWindow]) -> TimeWindow | None:
    return next(iter(eligible), None)


def build_slot_set(all_slots: Iterable[TimeWindow], earliest: dt.datetime) -> SlotSet:
    ordered = tuple(all_slots)
    return SlotSet(all_slots=ordered, eligible_slots=eligible_slots(ordered, earliest))
