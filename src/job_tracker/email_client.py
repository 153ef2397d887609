import os, base64, html, re
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import UpstreamFetchFailure
from .logging import get_logger
from .models import CandidateMessage

log = get_logger(__name__)

# Request all scopes once so token.json works for Gmail and gspread alike
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

SNIPPET_CHARS = 2000


def _ensure_creds(credentials_dir: str, scopes: List[str]) -> Credentials:
    client_secret_file = os.path.join(credentials_dir, "client_secret.json")
    token_file = os.path.join(credentials_dir, "token.json")
    os.makedirs(credentials_dir, exist_ok=True)
    creds: Optional[Credentials] = None
    if os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, scopes)
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(client_secret_file, scopes)
            creds = flow.run_local_server(port=0)
        with open(token_file, "w", encoding="utf-8") as token:
            token.write(creds.to_json())
    return creds


def get_gmail_service(credentials_dir: str):
    creds = _ensure_creds(credentials_dir, SCOPES)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def build_query(base_query: str, since: datetime) -> str:
    # Gmail accepts epoch seconds for after:
    window = f"after:{int(since.timestamp())}"
    return f"{base_query.strip()} {window}".strip() if base_query else window


def search_messages(service, query: str, max_results: int = 50) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    page_token = None
    try:
        while len(results) < max_results:
            resp = service.users().messages().list(
                userId="me", q=query, maxResults=max_results - len(results), pageToken=page_token
            ).execute()
            results.extend(resp.get("messages", []))
            page_token = resp.get("nextPageToken")
            if not page_token:
                break
    except HttpError as e:
        raise UpstreamFetchFailure(f"Gmail search failed: {e}") from e
    return results[:max_results]


def get_message(service, msg_id: str) -> Dict[str, Any]:
    try:
        return service.users().messages().get(userId="me", id=msg_id, format="full").execute()
    except HttpError as e:
        raise UpstreamFetchFailure(f"Gmail fetch of {msg_id} failed: {e}") from e


_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")
_TAG_RE = re.compile(r"<[^<]+?>")


def _header_map(payload: Dict[str, Any]) -> Dict[str, str]:
    # first occurrence wins, header names are case-insensitive
    headers: Dict[str, str] = {}
    for h in payload.get("headers", []):
        headers.setdefault(h.get("name", "").lower(), h.get("value", ""))
    return headers


def _decode_part(body: Dict[str, Any]) -> str:
    data = body.get("data")
    if not data:
        return ""
    # base64url without padding
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _normalize(text: str) -> str:
    text = _ZERO_WIDTH_RE.sub("", text or "")
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\s+\n", "\n", text).strip()


def extract_plain_text(message: Dict[str, Any]) -> Tuple[str, str, str]:
    """Returns (subject, from header, body text). HTML parts are reduced to
    their text; parts are visited in document order."""
    payload = message.get("payload", {})
    headers = _header_map(payload)

    chunks: List[str] = []
    stack = [payload]
    while stack:
        part = stack.pop()
        children = part.get("parts")
        if children:
            stack.extend(reversed(children))
            continue
        mime = part.get("mimeType", "")
        text = _decode_part(part.get("body", {}))
        if not text:
            continue
        if mime == "text/html":
            chunks.append(html.unescape(_TAG_RE.sub(" ", text)))
        elif mime == "text/plain" or part is payload:
            chunks.append(text)

    return _normalize(headers.get("subject", "")), _normalize(headers.get("from", "")), _normalize("\n".join(chunks))


def to_candidate(message: Dict[str, Any]) -> CandidateMessage:
    subject, from_email, body = extract_plain_text(message)
    internal_date_ms = int(message.get("internalDate", "0"))
    return CandidateMessage(
        id=message["id"],
        subject=subject,
        sender=from_email,
        received_at=datetime.fromtimestamp(internal_date_ms / 1000, tz=timezone.utc),
        body_snippet=(body or message.get("snippet", ""))[:SNIPPET_CHARS],
    )


def fetch_candidates_since(service, since: datetime, base_query: str = "", max_results: int = 50) -> List[CandidateMessage]:
    """Messages received after ``since``, oldest first so that an "applied"
    email is reconciled before the "interview" email that follows it."""
    query = build_query(base_query, since)
    refs = search_messages(service, query, max_results=max_results)
    if len(refs) >= max_results:
        # Gmail lists newest first, so anything past the cap is the oldest mail in the window
        log.warning("candidates_truncated", query=query, max_results=max_results)
    candidates = [to_candidate(get_message(service, ref["id"])) for ref in refs]
    candidates.sort(key=lambda c: c.received_at)
    log.info("candidates_fetched", query=query, count=len(candidates))
    return candidates
