from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotguard.clock import ms_between, now_utc
from slotguard.config import Settings
from slotguard.domain import (
    NOW,
    Actions,
    ClosedNotice,
    EngineInputs,
    EngineState,
    FulfillmentMethod,
    ReassignedNotice,
    Selection,
    SlotProviderError,
    TimeWindow,
)
from slotguard.engine import TimeslotValidityEngine, buffer_for
from slotguard.slots import build_slot_set, fetch_slots, next_eligible_slot
from slotguard.state_file import SelectionState, apply_actions, load_state, save_state
from slotguard.telegram_notifier import Notifier, TelegramNotifier, broadcast

logger = logging.getLogger(__name__)

# The stored flag follows the engine guard only while these states hold.
_GUARD_NEUTRAL_STATES = {EngineState.LOADING, EngineState.NOW_SELECTED}


@dataclass(frozen=True)
class TickResult:
    state: SelectionState
    actions: Actions
    slots: tuple[TimeWindow, ...]


def _admin_chat_ids(settings: Settings) -> tuple[str, ...]:
    return (settings.telegram_admin_chat_id,) if settings.telegram_admin_chat_id else ()


def _send_status_message(settings: Settings, text: str) -> None:
    # Статусные сообщения только админу: клиентам шлём лишь уведомления о слотах.
    chat_ids = _admin_chat_ids(settings)
    if not chat_ids:
        logger.debug("No admin chat configured, status message dropped: %s", text)
        return
    broadcast(
        bot_token=settings.telegram_bot_token,
        chat_ids=chat_ids,
        text=text,
        timeout_seconds=settings.http_timeout_seconds,
    )


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # Без стектрейса: только тип и сообщение, чтобы не спамить между попытками.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        logger.warning("Slots fetch attempt %s failed (%s)", retry_state.attempt_number, reason or "unknown")


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying slots fetch...")
        return
    logger.info("Retrying slots fetch (attempt %s) in %.0f sec.", retry_state.attempt_number + 1, sleep_seconds)


def _fetch_slots_with_retry(settings: Settings) -> tuple[TimeWindow, ...]:
    decorated = retry(
        retry=retry_if_exception_type((httpx.HTTPError, SlotProviderError)),
        stop=stop_after_attempt(settings.fetch_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=4),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(fetch_slots)

    return decorated(settings.slots_url, timeout_seconds=settings.http_timeout_seconds)


def _deliver_notices(notifier: Notifier, actions: Actions) -> None:
    for notice in actions.notices:
        try:
            if isinstance(notice, ClosedNotice):
                notifier.emit_closed_notice()
            elif isinstance(notice, ReassignedNotice):
                notifier.emit_reassigned_notice(notice.start_local, notice.end_local)
        except Exception as e:
            # The selection update still has to be saved.
            logger.warning("Failed to deliver %s (%s: %s)", type(notice).__name__, type(e).__name__, e)


def run_tick(
    settings: Settings,
    engine: TimeslotValidityEngine,
    state: SelectionState,
    *,
    notifier: Notifier,
    last_slots: tuple[TimeWindow, ...] = (),
) -> TickResult:
    now = engine.clock()

    # Countdown is ours to tick down; the engine only resets it.
    if state.updated_at is not None:
        state = replace(state, countdown_ms=state.countdown_ms - ms_between(state.updated_at, now))

    loading = False
    try:
        slots = _fetch_slots_with_retry(settings)
    except (httpx.HTTPError, SlotProviderError) as e:
        logger.error("Slots fetch failed (%s: %s), evaluating with stale slots", type(e).__name__, e)
        slots = last_slots
        loading = True
        if not state.fetch_failing:
            # Only the first failure of an outage is reported.
            try:
                _send_status_message(settings, text=f"Slots fetch failed.\nReason: {type(e).__name__}: {e}")
            except Exception:
                logger.warning("Failed to send telegram status message", exc_info=True)
    else:
        if state.fetch_failing:
            logger.info("Slots fetch recovered")
            try:
                _send_status_message(settings, text="Slots fetch recovered.")
            except Exception:
                logger.warning("Failed to send telegram status message", exc_info=True)

    buffer = buffer_for(state.method, dt.timedelta(minutes=settings.delivery_time_buffer_minutes))
    slot_set = build_slot_set(slots, now + buffer)

    actions = engine.evaluate(
        EngineInputs(
            countdown_ms=state.countdown_ms,
            selection=state.selection,
            next_eligible_slot=next_eligible_slot(slot_set.eligible_slots),
            slots=slot_set,
            loading=loading,
            facility_tz=settings.facility_tz,
            method=state.method,
            previous_method=state.previous_method,
            buffer=buffer,
        )
    )
    logger.info(
        "Tick: state=%s slots=%d eligible=%d actions=%d",
        actions.state.value,
        len(slot_set.all_slots),
        len(slot_set.eligible_slots),
        len(actions.items),
    )

    _deliver_notices(notifier, actions)

    new_state = apply_actions(state, actions)
    if actions.state is EngineState.CLOSED:
        closed_notice_sent = engine.closed_notice_fired
    elif actions.state in _GUARD_NEUTRAL_STATES:
        closed_notice_sent = state.closed_notice_sent
    else:
        # Facility is open again: the next closing gets its own notice.
        closed_notice_sent = False
        engine.rearm_closed_notice()

    new_state = replace(
        new_state,
        # Keep the old method while loading so the change is still seen once slots arrive.
        previous_method=state.previous_method if loading else state.method,
        closed_notice_sent=closed_notice_sent,
        updated_at=now,
        fetch_failing=loading,
    )
    return TickResult(state=new_state, actions=actions, slots=slots)


def update_selection(
    settings: Settings,
    state: SelectionState,
    *,
    method: FulfillmentMethod | None = None,
    selection: Selection | None = None,
    clock: Callable[[], dt.datetime] = now_utc,
) -> SelectionState:
    """Apply a customer's choice to the stored state.

    A new concrete time gets a fresh countdown: the distance from the earliest
    acceptable moment to the chosen time.
    """
    now = clock()
    if method is not None:
        # previous_method stays as is, so the next tick sees the switch.
        state = replace(state, method=method)
    if selection is NOW:
        state = replace(state, selection=NOW, countdown_ms=0, updated_at=now)
    elif selection is not None:
        buffer = buffer_for(state.method, dt.timedelta(minutes=settings.delivery_time_buffer_minutes))
        state = replace(
            state,
            selection=selection,
            countdown_ms=max(0, ms_between(now + buffer, selection)),
            updated_at=now,
        )
    return state


def _build_notifier(settings: Settings) -> TelegramNotifier:
    return TelegramNotifier(
        bot_token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
        timeout_seconds=settings.http_timeout_seconds,
    )


def run_check_once(
    settings: Settings,
    *,
    notifier: Notifier | None = None,
    clock: Callable[[], dt.datetime] = now_utc,
) -> TickResult:
    try:
        state = load_state(settings.state_file)
        engine = TimeslotValidityEngine(clock=clock, closed_notice_fired=state.closed_notice_sent)
        result = run_tick(settings, engine, state, notifier=notifier or _build_notifier(settings))

        save_state(settings.state_file, result.state)
        logger.info("State saved to %s", settings.state_file)
        return result

    except Exception as e:
        # Стектрейс не логируем, чтобы не засорять логи
        logger.error("Check failed (%s: %s)", type(e).__name__, e)
        try:
            _send_status_message(settings, text=f"Check failed.\nReason: {type(e).__name__}: {e}")
        except Exception:
            logger.warning("Failed to send telegram status message", exc_info=True)
        raise


def run_forever(settings: Settings) -> None:
    logger.info("Worker started. Interval=%ss", settings.tick_interval_seconds)

    # One engine per process: the closed notice fires at most once per run.
    state = load_state(settings.state_file)
    engine = TimeslotValidityEngine(closed_notice_fired=state.closed_notice_sent)
    notifier = _build_notifier(settings)
    last_slots: tuple[TimeWindow, ...] = ()

    while True:
        try:
            # Re-read every tick: selection and method may be changed from outside.
            state = load_state(settings.state_file)
            result = run_tick(settings, engine, state, notifier=notifier, last_slots=last_slots)
            last_slots = result.slots
            save_state(settings.state_file, result.state)
        except Exception as e:
            logger.error("Tick failed in run_forever (%s: %s)", type(e).__name__, e)
        time.sleep(settings.tick_interval_seconds)
