import argparse
import json
from datetime import datetime, timedelta
from typing import List, Optional

import pytz

from .settings import (
    CREDENTIALS_DIR,
    Settings,
    load_settings,
    load_state,
    save_state,
    user_state,
    last_processed,
    set_last_processed,
)
from .logging import configure_logging, get_logger, run_context
from .email_client import get_gmail_service, fetch_candidates_since
from .classifier import BaseClassifier, GeminiClassifier, DEFAULT_GEMINI_MODEL
from .nlp_rules import RulesClassifier
from .rate_limiter import RateLimiter, DEFAULT_MIN_INTERVAL
from .reconcile import Reconciler
from .roster import DryRunRosterStore, RosterStore
from .sheets_writer import SheetsRosterStore, open_client
from .models import RunSummary

log = get_logger(__name__)


def build_classifier(cfg: Settings, engine: Optional[str] = None) -> BaseClassifier:
    engine = engine or cfg.classifier.get("engine", "gemini")
    if engine == "rules":
        return RulesClassifier()
    if engine == "gemini":
        return GeminiClassifier(
            api_key=cfg.gemini_api_key,
            model_name=cfg.classifier.get("model", DEFAULT_GEMINI_MODEL),
            timeout=cfg.classifier.get("timeout_seconds", 60),
        )
    raise ValueError(f"Unknown classifier engine: {engine}")


def build_store(cfg: Settings, dry_run: bool = False) -> RosterStore:
    store: RosterStore = SheetsRosterStore(
        open_client(CREDENTIALS_DIR),
        cfg.sheets.get("spreadsheet_name", "Job Applications"),
        cfg.sheets.get("worksheet_name", "{user_id}"),
    )
    return DryRunRosterStore(store) if dry_run else store


def window_start(cfg: Settings, state: dict, user_id: str, now: datetime, since: Optional[datetime] = None) -> datetime:
    if since is not None:
        return since
    watermark = last_processed(state, user_id)
    if watermark is not None:
        return watermark
    return now - timedelta(hours=int(cfg.app.get("default_lookback_hours", 24)))


def process_once(
    user_id: str,
    cfg: Settings,
    state: dict,
    reconciler: Reconciler,
    gmail_service,
    dry_run: bool = False,
    since: Optional[datetime] = None,
) -> RunSummary:
    """One run for one user. The watermark only moves after a successful,
    non-dry run with no roster write failures; otherwise it stays put so the
    next run sees the same window again (email-id dedup skips what landed)."""
    tz = pytz.timezone(cfg.timezone)
    run_started = datetime.now(tz)
    start = window_start(cfg, state, user_id, run_started, since)

    candidates = fetch_candidates_since(
        gmail_service,
        start,
        base_query=cfg.gmail.get("query", ""),
        max_results=int(cfg.gmail.get("max_results", 50)),
    )
    summary = reconciler.run_reconciliation(user_id, candidates)

    if summary.failed:
        log.warning("watermark_held", user_id=user_id, failed=summary.failed, window_start=start.isoformat())
    elif not dry_run:
        set_last_processed(state, user_id, run_started)
    return summary


def run(
    users: List[str],
    dry_run: bool = False,
    scheduled: bool = False,
    since: Optional[datetime] = None,
    engine: Optional[str] = None,
) -> int:
    cfg = load_settings()
    configure_logging(cfg.app.get("log_level", "INFO"), bool(cfg.app.get("log_json", False)))
    state = load_state()

    min_interval = float(cfg.classifier.get("min_interval_seconds", DEFAULT_MIN_INTERVAL))
    reconciler = Reconciler(
        classifier=build_classifier(cfg, engine),
        store=build_store(cfg, dry_run=dry_run),
        rate_limiter_factory=lambda: RateLimiter(min_interval),
    )
    gmail_service = get_gmail_service(CREDENTIALS_DIR)

    exit_code = 0
    # Users run one after another; overlapping runs for one user could double-create.
    for user_id in users or cfg.users:
        if scheduled and not user_state(state, user_id)["is_active"]:
            log.info("schedule_inactive", user_id=user_id)
            continue
        try:
            with run_context(user_id=user_id, dry_run=dry_run):
                summary = process_once(user_id, cfg, state, reconciler, gmail_service, dry_run=dry_run, since=since)
        except Exception:
            log.exception("run_failed", user_id=user_id)
            exit_code = 1
            continue
        save_state(state)
        print(json.dumps(summary.as_dict(), indent=2))
    return exit_code


def _parse_since(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Job application tracker: Gmail to Google Sheets")
    parser.add_argument("--user", action="append", dest="users", default=[], help="User id to process (repeatable); defaults to app.users")
    parser.add_argument("--dry-run", action="store_true", help="Read the roster but log writes instead of performing them")
    parser.add_argument("--scheduled", action="store_true", help="Skip users whose schedule is inactive")
    parser.add_argument("--since", type=_parse_since, help="ISO timestamp overriding the stored watermark")
    parser.add_argument("--classifier", choices=["gemini", "rules"], help="Override classifier.engine")
    args = parser.parse_args(argv)
    return run(args.users, dry_run=args.dry_run, scheduled=args.scheduled, since=args.since, engine=args.classifier)


if __name__ == "__main__":
    raise SystemExit(main())
