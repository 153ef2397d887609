"""
Classifier adapters.

A classifier turns one candidate message into a ClassificationResult or raises
ClassificationFailure. The reconciler treats a failure as "skip this message".
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import google.generativeai as genai

from .errors import ClassificationFailure
from .logging import get_logger
from .models import ApplicationStatus, CandidateMessage, ClassificationResult

log = get_logger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-lite"
UNKNOWN = "Unknown"

PROMPT = """You are an email classifier for job application tracking.

Analyze this email and determine:
1. Is this a job application-related email? (yes/no)
2. If yes, extract:
   - Job Title
   - Company Name
   - Application Status (choose ONE): applied, rejected, assessment, interview, moving-forward, offer

Email details:
Subject: {subject}
From: {sender}
Received: {received}
Content: {snippet}

Respond in JSON format only:
{{
  "isJobRelated": boolean,
  "jobTitle": string or null,
  "companyName": string or null,
  "status": string or null,
  "notes": string or null
}}"""

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?")


class BaseClassifier(ABC):
    """Classifier interface."""

    @abstractmethod
    def classify(self, message: CandidateMessage) -> ClassificationResult:
        """
        Classify one candidate message.

        Raises:
            ClassificationFailure: provider error or unusable response.
        """


def build_prompt(message: CandidateMessage, max_snippet_chars: int = 3000) -> str:
    return PROMPT.format(
        subject=message.subject or "No Subject",
        sender=message.sender or UNKNOWN,
        received=message.received_at.isoformat(),
        snippet=(message.body_snippet or "")[:max_snippet_chars],
    )


def parse_response(text: str) -> ClassificationResult:
    """Parse the model's JSON answer (optionally wrapped in a markdown fence)."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassificationFailure(f"Malformed classifier response: {cleaned[:200]!r}") from e
    if not isinstance(data, dict):
        raise ClassificationFailure(f"Expected a JSON object, got {type(data).__name__}")
    return result_from_dict(data)


def _truthy(value: Any) -> bool:
    # models occasionally answer "false" / "yes" as strings
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return value is True


def result_from_dict(data: Dict[str, Any]) -> ClassificationResult:
    if not _truthy(data.get("isJobRelated")):
        return ClassificationResult.not_job_related()
    try:
        status = ApplicationStatus.parse(data.get("status") or "")
    except ValueError as e:
        raise ClassificationFailure(str(e)) from e
    notes = data.get("notes") or None
    return ClassificationResult(
        is_job_related=True,
        job_title=(data.get("jobTitle") or UNKNOWN).strip(),
        company_name=(data.get("companyName") or UNKNOWN).strip(),
        status=status,
        notes=notes.strip() if isinstance(notes, str) else None,
    )


class GeminiClassifier(BaseClassifier):
    """Gemini-backed classifier."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_GEMINI_MODEL,
        timeout: Optional[float] = 60.0,
        model=None,
    ):
        self.model_name = model_name
        self.timeout = timeout
        if model is None:
            if not api_key:
                raise ValueError("GEMINI_API_KEY is required")
            genai.configure(api_key=api_key)
            model = genai.GenerativeModel(model_name)
        self.model = model

    def classify(self, message: CandidateMessage) -> ClassificationResult:
        prompt = build_prompt(message)
        request_options = {"timeout": self.timeout} if self.timeout else None
        try:
            response = self.model.generate_content(prompt, request_options=request_options)
            text = response.text
        except Exception as e:
            # SDK raises a mix of google.api_core errors, ValueError for blocked
            # candidates and transport errors; all mean "no verdict".
            log.warning("gemini_error", email_id=message.id, error=str(e))
            raise ClassificationFailure(f"Gemini call failed: {e}") from e

        result = parse_response(text)
        log.debug(
            "email_classified",
            email_id=message.id,
            is_job_related=result.is_job_related,
            status=result.status.value if result.status else None,
        )
        return result
