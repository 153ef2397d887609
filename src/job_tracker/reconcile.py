"""
Reconciliation of classified emails against the tracked-application roster.

Two dedup keys are applied in order:

1. the email id (a message already recorded as an entry's source is never
   classified again), and
2. the case-insensitive (job title, company) pair, which turns a later email
   about the same application into a status update instead of a new row.

Messages are processed strictly in input order. Entries created earlier in a
run are visible to later messages of the same run; the roster is not re-read
mid-run, so two overlapping runs for one user can still double-create.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Sequence, Set

from .classifier import BaseClassifier
from .errors import RosterWriteFailure
from .logging import get_logger
from .models import (
    CandidateMessage,
    ClassificationResult,
    IdentityKey,
    RunSummary,
    TrackedApplication,
)
from .rate_limiter import RateLimiter
from .roster import RosterStore

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        classifier: BaseClassifier,
        store: RosterStore,
        rate_limiter_factory: Callable[[], RateLimiter] = RateLimiter,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.classifier = classifier
        self.store = store
        self.rate_limiter_factory = rate_limiter_factory
        self.clock = clock

    def run_reconciliation(self, user_id: str, candidate_messages: Sequence[CandidateMessage]) -> RunSummary:
        """Load the roster snapshot once and reconcile the batch against it.
        RosterReadFailure propagates: no snapshot, no summary."""
        existing_roster = self.store.list_roster(user_id)
        return self.reconcile(user_id, candidate_messages, existing_roster)

    def reconcile(
        self,
        user_id: str,
        candidate_messages: Sequence[CandidateMessage],
        existing_roster: Sequence[TrackedApplication],
    ) -> RunSummary:
        summary = RunSummary(user_id=user_id, processed=len(candidate_messages), started_at=self.clock())
        limiter = self.rate_limiter_factory()
        bound = log.bind(user_id=user_id)

        seen_email_ids: Set[str] = {app.source_email_id for app in existing_roster if app.source_email_id}
        by_identity: Dict[IdentityKey, TrackedApplication] = {}
        for app in existing_roster:
            if app.identity_key in by_identity:
                bound.warning(
                    "duplicate_roster_identity",
                    job_title=app.job_title,
                    company=app.company_name,
                    row=app.row_identity,
                )
                continue
            by_identity[app.identity_key] = app

        bound.info("reconcile_started", candidates=len(candidate_messages), roster_size=len(existing_roster))

        for message in candidate_messages:
            if message.id in seen_email_ids:
                summary.skipped += 1
                continue

            if summary.classifier_calls > 0:
                limiter.throttle()
            summary.classifier_calls += 1
            try:
                result = self.classifier.classify(message)
            except Exception as e:
                summary.classification_failures += 1
                summary.record_error(message.id, f"classification: {e}")
                bound.warning("classification_failed", email_id=message.id, error=str(e))
                continue
            finally:
                limiter.mark()

            if not result.is_job_related:
                summary.not_job_related += 1
                continue

            try:
                self._apply(user_id, message, result, by_identity, seen_email_ids, summary)
            except RosterWriteFailure as e:
                summary.failed += 1
                summary.record_error(message.id, f"roster write: {e}")
                bound.error("roster_write_failed", email_id=message.id, error=str(e))

        summary.finished_at = self.clock()
        bound.info(
            "reconcile_finished",
            created=summary.created,
            updated=summary.updated,
            unchanged=summary.unchanged,
            skipped=summary.skipped,
            classifier_calls=summary.classifier_calls,
            failures=summary.classification_failures + summary.failed,
            throttled_seconds=round(limiter.waited, 3),
        )
        return summary

    def _apply(
        self,
        user_id: str,
        message: CandidateMessage,
        result: ClassificationResult,
        by_identity: Dict[IdentityKey, TrackedApplication],
        seen_email_ids: Set[str],
        summary: RunSummary,
    ) -> None:
        match = by_identity.get(result.identity_key)

        if match is None:
            app = TrackedApplication(
                job_title=result.job_title,
                company_name=result.company_name,
                status=result.status,
                source_email_id=message.id,
                last_updated_at=self.clock(),
                notes=result.notes,
                date_applied=message.received_at,
            )
            app.row_identity = self.store.create_entry(user_id, app)
            by_identity[app.identity_key] = app
            seen_email_ids.add(message.id)
            summary.created += 1
            log.info(
                "application_created",
                user_id=user_id,
                email_id=message.id,
                job_title=app.job_title,
                company=app.company_name,
                status=app.status.value,
            )
            return

        if match.status == result.status:
            summary.unchanged += 1
            return

        # Any status may follow any other; the sheet records the last known label.
        # The matched entry keeps its original source_email_id.
        updated = replace(
            match,
            status=result.status,
            notes=result.notes if result.notes else match.notes,
            last_updated_at=self.clock(),
        )
        self.store.update_entry(user_id, match.row_identity, updated)
        by_identity[result.identity_key] = updated
        summary.updated += 1
        log.info(
            "application_updated",
            user_id=user_id,
            email_id=message.id,
            row=match.row_identity,
            job_title=match.job_title,
            company=match.company_name,
            old_status=match.status.value,
            new_status=updated.status.value,
        )
