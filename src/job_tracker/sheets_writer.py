import os
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import gspread

from .errors import RosterReadFailure, RosterWriteFailure
from .logging import get_logger
from .models import ApplicationStatus, TrackedApplication
from .roster import RosterStore

log = get_logger(__name__)

HEADERS = ["Job Title", "Company", "Date Applied", "Status", "Last Updated", "Email ID", "Notes"]
LAST_COLUMN = "G"
FIRST_DATA_ROW = 2

_UPDATED_ROW_RE = re.compile(r"![A-Z]+(\d+)")


def open_client(credentials_dir: str):
    """Service account when GSPREAD_SERVICE_ACCOUNT_JSON is set, otherwise the
    installed-app OAuth token shared with the Gmail client."""
    sa_path = os.getenv("GSPREAD_SERVICE_ACCOUNT_JSON", "").strip()
    if sa_path:
        return gspread.service_account(filename=sa_path)
    return gspread.oauth(
        credentials_filename=os.path.join(credentials_dir, "client_secret.json"),
        authorized_user_filename=os.path.join(credentials_dir, "token.json"),
    )


def ensure_sheet(gc, spreadsheet_name: str, worksheet_name: str):
    try:
        sh = gc.open(spreadsheet_name)
    except gspread.SpreadsheetNotFound:
        sh = gc.create(spreadsheet_name)
    try:
        ws = sh.worksheet(worksheet_name)
    except gspread.WorksheetNotFound:
        ws = sh.add_worksheet(title=worksheet_name, rows=1000, cols=len(HEADERS))
        ws.append_row(HEADERS)
        return ws
    first_row = ws.row_values(1)
    if first_row != HEADERS:
        if not first_row:
            ws.insert_row(HEADERS, index=1)
        else:
            ws.delete_rows(1)
            ws.insert_row(HEADERS, index=1)
    return ws


def _parse_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def application_to_row(app: TrackedApplication) -> List[str]:
    return [
        app.job_title,
        app.company_name,
        app.date_applied.isoformat(timespec="seconds") if app.date_applied else "",
        app.status.value,
        app.last_updated_at.isoformat(timespec="seconds"),
        app.source_email_id,
        app.notes or "",
    ]


def row_to_application(values: List[str], row_number: int) -> TrackedApplication:
    cells: Dict[str, Any] = dict(zip(HEADERS, list(values) + [""] * (len(HEADERS) - len(values))))
    raw_status = cells["Status"] or ApplicationStatus.APPLIED.value
    try:
        status = ApplicationStatus.parse(raw_status)
    except ValueError:
        log.warning("unknown_sheet_status", row=row_number, status=raw_status)
        status = ApplicationStatus.APPLIED
    return TrackedApplication(
        job_title=cells["Job Title"],
        company_name=cells["Company"],
        status=status,
        source_email_id=cells["Email ID"],
        last_updated_at=_parse_datetime(cells["Last Updated"]) or datetime.min,
        notes=cells["Notes"] or None,
        date_applied=_parse_datetime(cells["Date Applied"]),
        row_identity=row_number,
    )


class SheetsRosterStore(RosterStore):
    """Roster kept in one worksheet per user; row identity is the sheet row number."""

    def __init__(self, gc, spreadsheet_name: str, worksheet_template: str = "{user_id}"):
        self.gc = gc
        self.spreadsheet_name = spreadsheet_name
        self.worksheet_template = worksheet_template
        self._worksheets: Dict[str, Any] = {}

    def _worksheet(self, user_id: str):
        ws = self._worksheets.get(user_id)
        if ws is None:
            name = self.worksheet_template.format(user_id=user_id)
            ws = ensure_sheet(self.gc, self.spreadsheet_name, name)
            self._worksheets[user_id] = ws
        return ws

    def list_roster(self, user_id: str) -> List[TrackedApplication]:
        try:
            rows = self._worksheet(user_id).get_all_values()
        except gspread.exceptions.GSpreadException as e:
            raise RosterReadFailure(f"Failed to read roster for {user_id}: {e}") from e
        roster = []
        for row_number, values in enumerate(rows[1:], start=FIRST_DATA_ROW):
            if not any(v.strip() for v in values):
                continue
            roster.append(row_to_application(values, row_number))
        return roster

    def create_entry(self, user_id: str, application: TrackedApplication) -> int:
        try:
            ws = self._worksheet(user_id)
            resp = ws.append_row(application_to_row(application), value_input_option="RAW", table_range="A1")
            updated_range = ((resp or {}).get("updates") or {}).get("updatedRange", "")
            m = _UPDATED_ROW_RE.search(updated_range)
            if m:
                return int(m.group(1))
            # fall back to counting rows; only wrong if someone appends concurrently
            return len(ws.col_values(1))
        except gspread.exceptions.GSpreadException as e:
            raise RosterWriteFailure(f"Failed to add application to sheet: {e}") from e

    def update_entry(self, user_id: str, row_identity: int, application: TrackedApplication) -> None:
        if not row_identity or row_identity < FIRST_DATA_ROW:
            raise RosterWriteFailure(f"Cannot update application without a row identity ({row_identity!r})")
        r = row_identity
        try:
            self._worksheet(user_id).update(
                values=[application_to_row(application)],
                range_name=f"A{r}:{LAST_COLUMN}{r}",
                value_input_option="RAW",
            )
        except gspread.exceptions.GSpreadException as e:
            raise RosterWriteFailure(f"Failed to update row {r}: {e}") from e
