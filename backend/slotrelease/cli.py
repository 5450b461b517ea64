import argparse
import asyncio
import logging
from datetime import date

from .config import settings


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slotrelease",
        description="Sequential slot release for examination devices",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create missing tables")

    gen = sub.add_parser("generate", help="Generate slots for a date window")
    gen.add_argument("--start-date", type=_parse_date, default=None)
    gen.add_argument("--days", type=int, default=None)
    gen.add_argument("--device-id", type=int, action="append", dest="device_ids")
    gen.add_argument("--examination-id", type=int, action="append", dest="examination_ids")

    sub.add_parser("rebuild-pool", help="Rewrite the Redis slot pool from the database")

    rec = sub.add_parser("reconcile", help="Open a slot in every stalled group")
    rec.add_argument("--loop", action="store_true", help="Keep running every reconcile interval")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _setup_logging()
    logger = logging.getLogger("slotrelease")

    if args.command == "init-db":
        from .database import engine, init_db

        init_db(engine)
        logger.info("Database initialised")
        return 0

    from .services.slots.exceptions import SlotReleaseError
    from .services.slots.service import build_service

    service = build_service()

    try:
        if args.command == "generate":
            report = service.generate_slots(
                device_ids=args.device_ids,
                examination_ids=args.examination_ids,
                start_date=args.start_date,
                number_of_days=args.days,
            )
            logger.info(
                f"Generated {report.slots_created} slots, opened {report.groups_opened} groups, "
                f"skipped {report.skipped_device_days} device-days"
            )
            for err in report.errors:
                logger.error(f"Device {err.device_id} on {err.date}: {err.message}")
            return 0 if report.success else 1

        if args.command == "rebuild-pool":
            count = service.rebuild_pool()
            logger.info(f"Slot pool rebuilt with {count} entries")
            return 0

        if args.command == "reconcile":
            if args.loop:
                from .services.reconcile_checker import reconcile_checker_loop

                try:
                    asyncio.run(reconcile_checker_loop(service))
                except KeyboardInterrupt:
                    logger.info("Stopped")
                return 0

            promoted = service.reconcile(start_date=date.today())
            logger.info(f"Reconcile opened {len(promoted)} groups")
            return 0

    except (SlotReleaseError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
