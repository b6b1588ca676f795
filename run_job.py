import argparse
import logging

from sqlalchemy.exc import SQLAlchemyError

from farmcall import call_queue, events
from farmcall.db import SessionLocal, init_db
from farmcall.imap_listener import process_mailbox
from farmcall.scheduler import run_propensity, run_sweep, run_top_up
from farmcall.scoring import default_scorer

logger = logging.getLogger("run_job")


def _rebuild_top_contacts():
    db = SessionLocal()
    try:
        return events.rescore_active_events(db, default_scorer())
    finally:
        db.close()


def _migrate_cooldowns(path):
    db = SessionLocal()
    try:
        return call_queue.migrate_legacy_cooldowns(db, path)
    finally:
        db.close()


def _import_geocodes(path):
    return default_scorer().geocache.import_json(path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a farmcall batch job once.")
    sub = parser.add_subparsers(dest="job", required=True)
    sub.add_parser("sweep", help="reactivate elapsed snoozes and cooldowns")
    sub.add_parser("poll-mailbox", help="ingest unseen property alert emails")
    top_up = sub.add_parser("top-up", help="admit N contacts to the queue")
    top_up.add_argument("count", type=int, nargs="?", default=None)
    sub.add_parser("propensity", help="recompute every contact's propensity score")
    sub.add_parser("rebuild-top-contacts", help="re-score every active market event")
    migrate = sub.add_parser("migrate-cooldowns", help="import a legacy cooldown JSON file")
    migrate.add_argument("path")
    geocodes = sub.add_parser("import-geocodes", help="seed the geocode cache from a JSON file")
    geocodes.add_argument("path")
    return parser


def run(args) -> object:
    if args.job == "sweep":
        return run_sweep()
    if args.job == "poll-mailbox":
        return process_mailbox()
    if args.job == "top-up":
        return run_top_up(args.count)
    if args.job == "propensity":
        return run_propensity()
    if args.job == "rebuild-top-contacts":
        return _rebuild_top_contacts()
    if args.job == "migrate-cooldowns":
        return _migrate_cooldowns(args.path)
    if args.job == "import-geocodes":
        return _import_geocodes(args.path)
    raise ValueError(args.job)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args()
    try:
        init_db()
        result = run(args)
    except SQLAlchemyError as e:
        logger.error("[%s] storage error: %s", args.job, e)
        raise SystemExit(1)
    logger.info("[%s] done: %s", args.job, result)
