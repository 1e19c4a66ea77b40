import argparse
import logging
import os
from typing import Optional, Sequence

from dotenv import load_dotenv

from .config import Config, load_config
from .engine import compute_tender, recompute_tender
from .errors import NotFoundError, PreconditionError, ValidationError
from .profile import MarkupProfile
from .redistribution import RedistributionCoordinator, TargetEntry, WithdrawalEntry
from .reporting import make_summary_text, position_summary_frame, reconciliation_frame, write_frame
from .snapshot import load_snapshot, save_snapshot
from .store import InMemoryCostStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REJECTED = 2


def _open_store(cfg: Config, tender_id: str) -> InMemoryCostStore:
    if cfg.snapshot_path is None:
        raise PreconditionError("No snapshot given; pass --snapshot or set TENDERCOST_SNAPSHOT")
    store = load_snapshot(cfg.snapshot_path)
    if cfg.profile_path is not None:
        profile = MarkupProfile.load(cfg.profile_path).with_updates(tender_id=tender_id, is_active=True)
        store.save_markup_profile(profile)
        logger.info("Markup profile overridden from %s", cfg.profile_path)
    return store


def _parse_source(token: str) -> WithdrawalEntry:
    """``CATEGORY:PERCENT`` or ``CATEGORY/DETAIL[,DETAIL...]:PERCENT``."""

    target, sep, percent = token.rpartition(":")
    if not sep or not target:
        raise ValidationError(f"Source must look like CATEGORY:PERCENT, got {token!r}")
    category_id, details = _split_target(target)
    return WithdrawalEntry(percent=percent, category_id=category_id, detail_category_ids=details)


def _split_target(token: str) -> tuple:
    category_id, sep, details = token.partition("/")
    detail_ids = tuple(d.strip() for d in details.split(",") if d.strip()) if sep else ()
    return (category_id.strip() or None), detail_ids


def _parse_target(token: str) -> TargetEntry:
    category_id, details = _split_target(token)
    return TargetEntry(category_id=category_id, detail_category_ids=details)


def cmd_recompute(cfg: Config, args: argparse.Namespace) -> int:
    store = _open_store(cfg, args.tender_id)
    result = recompute_tender(store, args.tender_id, batch_size=cfg.batch_size, max_workers=cfg.max_workers)
    logger.info("Written: %d | skipped: %d | failed: %d", len(result.written), len(result.skipped), result.failed_count)
    if result.warning:
        logger.warning("%s: %s", result.warning, ", ".join(sorted(result.failed)))
    if args.write_back:
        save_snapshot(store, cfg.snapshot_path)
        logger.info("Snapshot updated: %s", cfg.snapshot_path)
    return EXIT_OK


def cmd_summary(cfg: Config, args: argparse.Namespace) -> int:
    store = _open_store(cfg, args.tender_id)
    profile = store.fetch_markup_profile(args.tender_id)
    if profile is None:
        raise PreconditionError(f"No active markup profile for tender {args.tender_id}")
    costs = compute_tender(store.fetch_line_items(tender_id=args.tender_id), profile, max_workers=cfg.max_workers)
    frame = position_summary_frame(costs)
    logger.info("%s", frame.to_string(index=False))
    logger.info("\n%s", make_summary_text(costs))
    path = write_frame(frame, cfg.output_dir, f"{args.tender_id}_positions.csv")
    logger.info("Position summary written to %s", path)
    return EXIT_OK


def cmd_redistribute(cfg: Config, args: argparse.Namespace) -> int:
    store = _open_store(cfg, args.tender_id)
    coordinator = RedistributionCoordinator(store, cap_policy=cfg.withdrawal_cap)
    request = coordinator.build_and_submit_redistribution(
        [_parse_source(token) for token in args.source],
        [_parse_target(token) for token in args.target],
        args.tender_id,
        args.name,
        description=args.description,
    )
    logger.info("Redistribution %s is active", request.id)
    frame = reconciliation_frame(coordinator.reconcile(args.tender_id))
    logger.info("%s", frame.to_string(index=False))
    path = write_frame(frame, cfg.output_dir, f"{args.tender_id}_reconciliation.csv")
    logger.info("Reconciliation written to %s", path)
    if args.write_back:
        save_snapshot(store, cfg.snapshot_path)
        logger.info("Snapshot updated: %s", cfg.snapshot_path)
    return EXIT_OK


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Commercial cost engine for tender line items")
    parser.add_argument("--snapshot", help="Tender snapshot JSON")
    parser.add_argument("--profile", help="Markup profile JSON/YAML overriding the snapshot's active profile")
    parser.add_argument("--output-dir", help="Directory for generated outputs")
    parser.add_argument("--batch-size", type=int, help="Items written per batch")
    parser.add_argument("--max-workers", type=int, help="Threads used to price positions")
    parser.add_argument("--withdrawal-cap", choices=["reject", "clamp"], help="Handling of withdrawals above 100%%")
    parser.add_argument("-v", "--verbose", action="store_true", help="Increase logging verbosity")
    sub = parser.add_subparsers(dest="command", required=True)

    recompute = sub.add_parser("recompute", help="Recompute and persist commercial costs")
    recompute.add_argument("tender_id")
    recompute.add_argument("--write-back", action="store_true", help="Save results into the snapshot")
    recompute.set_defaults(handler=cmd_recompute)

    summary = sub.add_parser("summary", help="Print position and tender totals")
    summary.add_argument("tender_id")
    summary.set_defaults(handler=cmd_summary)

    redistribute = sub.add_parser("redistribute", help="Shift works cost between cost categories")
    redistribute.add_argument("tender_id")
    redistribute.add_argument(
        "--source", action="append", required=True, help="CATEGORY[/DETAIL,...]:PERCENT (repeatable)"
    )
    redistribute.add_argument("--target", action="append", required=True, help="CATEGORY[/DETAIL,...] (repeatable)")
    redistribute.add_argument("--name", default="Redistribution", help="Redistribution name")
    redistribute.add_argument("--description", help="Optional description")
    redistribute.add_argument("--write-back", action="store_true", help="Save results into the snapshot")
    redistribute.set_defaults(handler=cmd_redistribute)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    cfg = load_config(os.environ, args)
    log_level = logging.DEBUG if cfg.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(message)s")
    try:
        return args.handler(cfg, args)
    except (ValidationError, PreconditionError, NotFoundError) as exc:
        logger.error("Rejected: %s", exc)
        return EXIT_REJECTED
    except Exception:  # pragma: no cover
        logger.exception("Fatal error in tendercost")
        return EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
