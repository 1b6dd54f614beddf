import argparse
import logging

from slotguard.config import load_settings
from slotguard.domain import FulfillmentMethod
from slotguard.state_file import load_state, parse_selection, save_state
from slotguard.worker import run_check_once, run_forever, update_selection, _send_status_message


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _parse_select(raw: str, tz_name: str):
    # Times typed without an offset are the facility's wall time.
    try:
        return parse_selection(raw, tz_name=tz_name)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected ISO-8601 time or 'now', got {raw!r}") from None


def main() -> int:
    parser = argparse.ArgumentParser(description="SlotGuard: keeps a delivery/pickup time valid")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    parser.add_argument(
        "--method",
        choices=[m.value for m in FulfillmentMethod],
        help="Switch the order method before checking",
    )
    parser.add_argument("--select", help="Choose a time (ISO-8601, facility time if no offset) or 'now'")
    args = parser.parse_args()

    _setup_logging()
    settings = load_settings()

    if args.method or args.select is not None:
        try:
            selection = _parse_select(args.select, settings.facility_tz) if args.select is not None else None
        except argparse.ArgumentTypeError as e:
            parser.error(f"argument --select: {e}")
        state = update_selection(
            settings,
            load_state(settings.state_file),
            method=FulfillmentMethod(args.method) if args.method else None,
            selection=selection,
        )
        save_state(settings.state_file, state)

    # Уведомление о старте (best-effort)
    try:
        _send_status_message(
            settings,
            text=(
                "SlotGuard started.\n"
                f"Mode: {'once' if args.once else 'forever'}\n"
                f"facility_tz={settings.facility_tz} interval={settings.tick_interval_seconds}s"
            ),
        )
    except Exception:
        logging.getLogger(__name__).warning("Failed to send Telegram startup message", exc_info=True)

    try:
        if args.once:
            run_check_once(settings)
            return 0

        run_forever(settings)
        return 0

    except Exception as e:
        # Уведомление о краше (best-effort)
        try:
            _send_status_message(
                settings,
                text=(
                    "SlotGuard crashed.\n"
                    f"Reason: {type(e).__name__}: {e}"
                ),
            )
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram crash message", exc_info=True)
        raise

    finally:
        # Уведомление о выходе/остановке процесса (best-effort)
        try:
            _send_status_message(settings, text="SlotGuard stopped (process exit).")
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram shutdown message", exc_info=True)


if __name__ == "__main__":
    raise SystemExit(main())
