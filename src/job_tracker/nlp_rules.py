import re
from typing import Optional

from .classifier import BaseClassifier, UNKNOWN
from .models import ApplicationStatus, CandidateMessage, ClassificationResult

# First match wins, so the more decisive outcomes come first.
STATUS_RULES = [
    (ApplicationStatus.OFFER, r"(?:offer letter|pleased to offer|extend (?:you )?an offer|job offer)"),
    (ApplicationStatus.REJECTED, r"(?:we regret|unfortunately|not moving forward|not be moving forward|decided to move forward with other|other candidates|declined)"),
    (ApplicationStatus.INTERVIEW, r"(?:interview|schedule time|book a time|phone screen|screening call)"),
    (ApplicationStatus.ASSESSMENT, r"(?:online assessment|coding challenge|take-home|hackerrank|codility|codesignal|assessment)"),
    (ApplicationStatus.MOVING_FORWARD, r"(?:next steps?|move you forward|moving forward with your application|advance to the next)"),
    (ApplicationStatus.APPLIED, r"(?:application confirmation|application received|thank you for applying|thank you for your application|we(?:\s+have)?\s+received your application|we'?ve received your application|confirm that your application|has been received|thank you for your interest)"),
]

ROLE_PATTERNS = [
    r"for the (.+?) (?:position|role|opening)",
    r"application (?:for|to) (?:the )?(.+?) (?:at|with) ",
    r"\b((?:senior |junior |staff |principal |lead )?(?:software|data|machine learning|ml|ai|backend|frontend|full[- ]stack|platform|product|research|security)[^.,\n]{0,30}?\b(?:engineer|scientist|developer|analyst|manager|designer|intern(?:ship)?))\b",
]

_COMPANY_END = r"(?=\s+(?:for|about|regarding)\b|\s*[-|:!,.—(]|$)"

COMPANY_PATTERNS = [
    r"\b(?:at|with)\s+([A-Z][A-Za-z0-9&.\- ]{1,40}?)" + _COMPANY_END,
    r"\b(?:applying|application) (?:to|at)\s+([A-Z][A-Za-z0-9&.\- ]{1,40}?)" + _COMPANY_END,
]

_STRIP = " -|:\"'"


def classify_status(subject: str, body: str) -> Optional[ApplicationStatus]:
    text = f"{subject}\n{body}".lower()
    for status, pattern in STATUS_RULES:
        if re.search(pattern, text):
            return status
    return None


def extract_company(subject: str, from_header: str, body: str) -> str:
    for pattern in COMPANY_PATTERNS:
        m = re.search(pattern, subject)
        if m:
            return m.group(1).strip(_STRIP)
    m = re.search(r"^(.*?)(?:<|$)", from_header or "")
    if m:
        candidate = m.group(1).strip().strip('"')
        # "Acme Careers" / "Acme Recruiting" -> "Acme"
        candidate = re.sub(r"\s+(?:careers|recruiting|talent(?: acquisition)?|jobs|hr|team)$", "", candidate, flags=re.I)
        if candidate:
            return candidate
    return UNKNOWN


def extract_role(subject: str, body: str) -> str:
    for text in (subject, body):
        for pattern in ROLE_PATTERNS:
            m = re.search(pattern, text or "", flags=re.I)
            if m:
                return m.group(1).strip(_STRIP)
    return UNKNOWN


class RulesClassifier(BaseClassifier):
    """Regex-based classifier. No network; good enough for dry runs."""

    def classify(self, message: CandidateMessage) -> ClassificationResult:
        status = classify_status(message.subject, message.body_snippet)
        if status is None:
            return ClassificationResult.not_job_related()
        return ClassificationResult(
            is_job_related=True,
            job_title=extract_role(message.subject, message.body_snippet),
            company_name=extract_company(message.subject, message.sender, message.body_snippet),
            status=status,
        )
