from __future__ import annotations

import datetime as dt
import logging
from typing import Callable

from slotguard.clock import FacilityClock, ms_between, now_utc
from slotguard.domain import (
    NOW,
    Action,
    Actions,
    ClosedNotice,
    EngineInputs,
    EngineState,
    FulfillmentMethod,
    ReassignedNotice,
    Selection,
    SetCountdown,
    SetSelection,
)

logger = logging.getLogger(__name__)

PICKUP_BUFFER = dt.timedelta(minutes=15)

# Countdown thresholds, in ms. Expiry fires below one unit (negative values
# included); the method-change correction needs strictly more than one.
EXPIRED_BELOW_MS = 1
METHOD_REASSIGN_ABOVE_MS = 1


def buffer_for(method: FulfillmentMethod, delivery_buffer: dt.timedelta) -> dt.timedelta:
    if method is FulfillmentMethod.DELIVERY:
        return delivery_buffer
    return PICKUP_BUFFER


class TimeslotValidityEngine:
    """Keeps a delivery/pickup selection consistent with the available slots.

    evaluate() is called every time one of the inputs changes and returns the
    actions the caller has to apply. The only state kept between calls is the
    closed-notice guard, so the "closed for the day" notice goes out once per
    engine instance.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], dt.datetime] = now_utc,
        closed_notice_fired: bool = False,
    ) -> None:
        self.clock = clock
        self._closed_notice_pending = not closed_notice_fired

    @property
    def closed_notice_fired(self) -> bool:
        return not self._closed_notice_pending

    def rearm_closed_notice(self) -> None:
        """Let the closed notice fire again, e.g. once the facility has reopened."""
        self._closed_notice_pending = True

    def evaluate(self, inputs: EngineInputs) -> Actions:
        if inputs.selection is NOW:
            return Actions(EngineState.NOW_SELECTED)

        facility = FacilityClock(inputs.facility_tz)
        now = self.clock()
        earliest = facility.to_local(now + inputs.buffer)
        slots = inputs.slots

        if inputs.loading:
            # Slot list is not authoritative yet: no "closed"/"no slots" conclusions.
            logger.debug("Slots are loading, skipping evaluation (earliest=%s)", earliest)
            return Actions(EngineState.LOADING)

        last = slots.last_slot
        after_work_hours = earliest > facility.to_local(last.end) if last is not None else True
        closed = inputs.selection is not None and not slots.eligible_slots and after_work_hours

        if closed:
            if self._closed_notice_pending:
                self._closed_notice_pending = False
                logger.info("Facility is closed for the day (earliest=%s)", earliest)
                return Actions(EngineState.CLOSED, (ClosedNotice(),))
            return Actions(EngineState.CLOSED)

        selection: Selection | None = inputs.selection
        countdown_ms = inputs.countdown_ms
        items: list[Action] = []
        state = EngineState.NORMAL

        selection_local = facility.to_local(selection if selection is not None else now)
        if earliest > selection_local and countdown_ms < EXPIRED_BELOW_MS:
            nxt = inputs.next_eligible_slot
            if nxt is not None:
                selection = nxt.start
                countdown_ms = ms_between(earliest, facility.to_local(nxt.start))
            else:
                selection = now
                countdown_ms = 0
            items += [SetSelection(selection), SetCountdown(countdown_ms)]
            if nxt is not None:
                items.append(
                    ReassignedNotice(
                        start_local=facility.format_time_only(nxt.start),
                        end_local=facility.format_time_only(nxt.end),
                    )
                )
            state = EngineState.EXPIRED_REASSIGN
            logger.info("Selected time has passed, reassigned to %s (countdown=%sms)", selection, countdown_ms)

        first = slots.first_eligible
        if (
            first is not None
            and selection is not None
            and facility.to_local(selection) < facility.to_local(first.start)
            and inputs.previous_method is not inputs.method
            and countdown_ms > METHOD_REASSIGN_ABOVE_MS
        ):
            selection = first.start
            countdown_ms = ms_between(earliest, facility.to_local(first.start))
            items += [SetSelection(selection), SetCountdown(countdown_ms)]
            state = EngineState.METHOD_REASSIGN
            logger.info(
                "Order method changed %s -> %s, moved selection to %s",
                inputs.previous_method,
                inputs.method,
                selection,
            )

        if not slots.eligible_slots:
            items += [SetSelection(NOW), SetCountdown(0)]
            state = EngineState.NO_SLOTS
            logger.info("No eligible slots left, falling back to NOW")

        return Actions(state, tuple(items))
