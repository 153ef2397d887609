"""
Shared pytest fixtures for the tracker tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from job_tracker.classifier import BaseClassifier
from job_tracker.errors import ClassificationFailure
from job_tracker.models import (
    ApplicationStatus,
    CandidateMessage,
    ClassificationResult,
    TrackedApplication,
)
from job_tracker.rate_limiter import RateLimiter
from job_tracker.reconcile import Reconciler
from job_tracker.roster import InMemoryRosterStore

BASE_TIME = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def make_message(msg_id: str, subject: str = "", minutes: int = 0) -> CandidateMessage:
    return CandidateMessage(
        id=msg_id,
        subject=subject or f"Subject {msg_id}",
        sender="Careers <jobs@example.com>",
        received_at=BASE_TIME + timedelta(minutes=minutes),
        body_snippet="",
    )


def job(title: str, company: str, status: str, notes: str = None) -> ClassificationResult:
    return ClassificationResult(
        is_job_related=True,
        job_title=title,
        company_name=company,
        status=ApplicationStatus(status),
        notes=notes,
    )


def tracked(title: str, company: str, status: str, email_id: str) -> TrackedApplication:
    return TrackedApplication(
        job_title=title,
        company_name=company,
        status=ApplicationStatus(status),
        source_email_id=email_id,
        last_updated_at=BASE_TIME - timedelta(days=3),
    )


class ScriptedClassifier(BaseClassifier):
    """Returns a canned verdict per message id; an Exception value is raised."""

    def __init__(self, verdicts):
        self.verdicts = dict(verdicts)
        self.calls = []

    def classify(self, message):
        self.calls.append(message.id)
        verdict = self.verdicts.get(message.id, ClassificationResult.not_job_related())
        if isinstance(verdict, Exception):
            raise verdict
        return verdict


class FakeTime:
    """Monotonic clock whose sleep() advances the clock."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


class FakeWallClock:
    def __init__(self, start=BASE_TIME):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def store():
    return InMemoryRosterStore()


@pytest.fixture
def make_reconciler(store, fake_time):
    def factory(classifier, roster_store=None):
        return Reconciler(
            classifier=classifier,
            store=roster_store or store,
            rate_limiter_factory=lambda: RateLimiter(0.2, clock=fake_time.clock, sleep=fake_time.sleep),
            clock=FakeWallClock(),
        )
    return factory


@pytest.fixture
def classification_failure():
    return ClassificationFailure("provider returned 500")
