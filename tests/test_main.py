"""Tests for the run driver: window selection and watermark handling."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from conftest import ScriptedClassifier, job, make_message
from job_tracker import main
from job_tracker.errors import RosterWriteFailure, UpstreamFetchFailure
from job_tracker.nlp_rules import RulesClassifier
from job_tracker.rate_limiter import RateLimiter
from job_tracker.reconcile import Reconciler
from job_tracker.roster import InMemoryRosterStore
from job_tracker.settings import Settings, last_processed, set_last_processed


@pytest.fixture
def cfg():
    return Settings(
        app={"timezone": "UTC", "default_lookback_hours": 24},
        gmail={"query": "-category:social", "max_results": 20},
        classifier={"engine": "rules"},
    )


def _reconciler(classifier, store):
    return Reconciler(classifier=classifier, store=store, rate_limiter_factory=lambda: RateLimiter(0))


def test_window_defaults_to_lookback(cfg):
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    assert main.window_start(cfg, {"users": {}}, "u1", now) == now - timedelta(hours=24)


def test_window_uses_watermark_then_override(cfg):
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    state = {"users": {}}
    watermark = datetime(2026, 10, 18, 8, 30, tzinfo=timezone.utc)
    set_last_processed(state, "u1", watermark)

    assert main.window_start(cfg, state, "u1", now) == watermark
    override = datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert main.window_start(cfg, state, "u1", now, since=override) == override


def test_process_once_advances_watermark_after_success(cfg):
    state = {"users": {}}
    store = InMemoryRosterStore()
    classifier = ScriptedClassifier({"m1": job("Engineer", "Acme", "applied")})

    with patch.object(main, "fetch_candidates_since", return_value=[make_message("m1")]) as fetch:
        summary = main.process_once("u1", cfg, state, _reconciler(classifier, store), MagicMock())

    assert summary.created == 1
    assert last_processed(state, "u1") is not None
    assert fetch.call_args.kwargs == {"base_query": "-category:social", "max_results": 20}


def test_process_once_holds_watermark_after_roster_write_failure(cfg):
    state = {"users": {}}
    previous = datetime(2026, 10, 18, 8, 30, tzinfo=timezone.utc)
    set_last_processed(state, "u1", previous)
    store = MagicMock()
    store.list_roster.return_value = []
    store.create_entry.side_effect = RosterWriteFailure("quota exceeded")
    classifier = ScriptedClassifier({"m1": job("Engineer", "Acme", "applied")})

    with patch.object(main, "fetch_candidates_since", return_value=[make_message("m1")]):
        summary = main.process_once("u1", cfg, state, _reconciler(classifier, store), MagicMock())

    assert summary.failed == 1
    assert last_processed(state, "u1") == previous


def test_process_once_leaves_watermark_on_fetch_failure(cfg):
    state = {"users": {}}
    with patch.object(main, "fetch_candidates_since", side_effect=UpstreamFetchFailure("503")):
        with pytest.raises(UpstreamFetchFailure):
            main.process_once("u1", cfg, state, _reconciler(ScriptedClassifier({}), InMemoryRosterStore()), MagicMock())

    assert last_processed(state, "u1") is None


def test_dry_run_does_not_advance_watermark(cfg):
    state = {"users": {}}
    with patch.object(main, "fetch_candidates_since", return_value=[]):
        main.process_once("u1", cfg, state, _reconciler(ScriptedClassifier({}), InMemoryRosterStore()),
                          MagicMock(), dry_run=True)

    assert last_processed(state, "u1") is None


def test_build_classifier(cfg):
    assert isinstance(main.build_classifier(cfg), RulesClassifier)
    with pytest.raises(ValueError):
        main.build_classifier(cfg, engine="spacy")


def test_run_skips_inactive_users_when_scheduled(cfg):
    state = {"users": {"paused": {"last_processed": None, "is_active": False}}}
    with patch.object(main, "load_settings", return_value=cfg), \
         patch.object(main, "configure_logging"), \
         patch.object(main, "load_state", return_value=state), \
         patch.object(main, "save_state") as save, \
         patch.object(main, "build_store", return_value=InMemoryRosterStore()), \
         patch.object(main, "get_gmail_service"), \
         patch.object(main, "process_once") as process:
        process.return_value.as_dict.return_value = {}
        code = main.run(["paused", "active"], scheduled=True)

    assert code == 0
    assert [c.args[0] for c in process.call_args_list] == ["active"]
    save.assert_called_once_with(state)


def test_run_reports_failure_and_continues(cfg):
    with patch.object(main, "load_settings", return_value=cfg), \
         patch.object(main, "configure_logging"), \
         patch.object(main, "load_state", return_value={"users": {}}), \
         patch.object(main, "save_state") as save, \
         patch.object(main, "build_store", return_value=InMemoryRosterStore()), \
         patch.object(main, "get_gmail_service"), \
         patch.object(main, "process_once") as process:
        ok = MagicMock()
        ok.as_dict.return_value = {"created": 0}
        process.side_effect = [UpstreamFetchFailure("503"), ok]
        code = main.run(["u1", "u2"])

    assert code == 1
    assert process.call_count == 2
    assert save.call_count == 1
