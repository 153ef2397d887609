from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ApplicationStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    ASSESSMENT = "assessment"
    INTERVIEW = "interview"
    MOVING_FORWARD = "moving-forward"
    OFFER = "offer"

    @classmethod
    def parse(cls, value: str) -> "ApplicationStatus":
        """Accepts "Moving Forward", "moving_forward", " OFFER " and the like."""
        if isinstance(value, cls):
            return value
        normalized = "-".join(str(value or "").strip().lower().replace("_", " ").split())
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown application status: {value!r}") from None


IdentityKey = Tuple[str, str]


def identity_key(job_title: str, company_name: str) -> IdentityKey:
    return (job_title or "").strip().casefold(), (company_name or "").strip().casefold()


@dataclass(frozen=True)
class CandidateMessage:
    id: str
    subject: str
    sender: str
    received_at: datetime
    body_snippet: str = ""


@dataclass(frozen=True)
class ClassificationResult:
    is_job_related: bool
    job_title: Optional[str] = None
    company_name: Optional[str] = None
    status: Optional[ApplicationStatus] = None
    notes: Optional[str] = None

    @classmethod
    def not_job_related(cls) -> "ClassificationResult":
        return cls(is_job_related=False)

    @property
    def identity_key(self) -> IdentityKey:
        return identity_key(self.job_title or "", self.company_name or "")


@dataclass
class TrackedApplication:
    job_title: str
    company_name: str
    status: ApplicationStatus
    source_email_id: str
    last_updated_at: datetime
    notes: Optional[str] = None
    date_applied: Optional[datetime] = None
    row_identity: Optional[int] = None   # sheet row number, None until persisted

    @property
    def identity_key(self) -> IdentityKey:
        return identity_key(self.job_title, self.company_name)


@dataclass
class RunSummary:
    user_id: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    not_job_related: int = 0
    classifier_calls: int = 0
    classification_failures: int = 0
    failed: int = 0
    processed: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record_error(self, message_id: str, reason: str) -> None:
        self.errors.append((message_id, reason))

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["errors"] = [{"message_id": m, "reason": r} for m, r in self.errors]
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat(timespec="seconds")
        return data
