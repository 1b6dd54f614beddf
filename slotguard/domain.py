from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


@dataclass(frozen=True, order=True)
class TimeWindow:
    """A single bookable interval in absolute (UTC-aware) time."""

    start: dt.datetime
    end: dt.datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"TimeWindow start must be before end: {self.start} >= {self.end}")


@dataclass(frozen=True)
class SlotSet:
    """Everything the facility offers today plus the still-bookable subset.

    Both sequences are chronological; eligible_slots is a subset of all_slots.
    """

    all_slots: tuple[TimeWindow, ...] = ()
    eligible_slots: tuple[TimeWindow, ...] = ()

    @property
    def last_slot(self) -> TimeWindow | None:
        return self.all_slots[-1] if self.all_slots else None

    @property
    def first_eligible(self) -> TimeWindow | None:
        return self.eligible_slots[0] if self.eligible_slots else None


class DeliveryTimeOption(str, Enum):
    NOW = "now"


# "As soon as possible": not tied to any slot.
NOW = DeliveryTimeOption.NOW

Selection = Union[dt.datetime, DeliveryTimeOption]


class FulfillmentMethod(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


@dataclass(frozen=True)
class EngineInputs:
    countdown_ms: int
    selection: Selection | None
    next_eligible_slot: TimeWindow | None
    slots: SlotSet
    loading: bool
    facility_tz: str
    method: FulfillmentMethod
    previous_method: FulfillmentMethod | None
    buffer: dt.timedelta


class EngineState(str, Enum):
    NOW_SELECTED = "now_selected"
    LOADING = "loading"
    CLOSED = "closed"
    EXPIRED_REASSIGN = "expired_reassign"
    METHOD_REASSIGN = "method_reassign"
    NO_SLOTS = "no_slots"
    NORMAL = "normal"


@dataclass(frozen=True)
class SetSelection:
    selection: Selection


@dataclass(frozen=True)
class SetCountdown:
    countdown_ms: int


@dataclass(frozen=True)
class ClosedNotice:
    pass


@dataclass(frozen=True)
class ReassignedNotice:
    start_local: str  # e.g. "2:30 PM"
    end_local: str


Action = Union[SetSelection, SetCountdown, ClosedNotice, ReassignedNotice]


@dataclass(frozen=True)
class Actions:
    """Result of one evaluation: the decided state and what the caller should apply, in order."""

    state: EngineState
    items: tuple[Action, ...] = field(default_factory=tuple)

    @property
    def selection(self) -> Selection | None:
        found = [a.selection for a in self.items if isinstance(a, SetSelection)]
        return found[-1] if found else None

    @property
    def countdown_ms(self) -> int | None:
        found = [a.countdown_ms for a in self.items if isinstance(a, SetCountdown)]
        return found[-1] if found else None

    @property
    def notices(self) -> tuple[ClosedNotice | ReassignedNotice, ...]:
        return tuple(a for a in self.items if isinstance(a, (ClosedNotice, ReassignedNotice)))


class SlotProviderError(RuntimeError):
    """The slot provider answered, but with something we can't use as a slot list."""
