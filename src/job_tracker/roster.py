"""
Roster store interface and the non-Sheets implementations.

Row identities are opaque to the reconciler; every store here hands out
integers because the Sheets store uses sheet row numbers.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional

from .errors import RosterWriteFailure
from .logging import get_logger
from .models import TrackedApplication

log = get_logger(__name__)


class RosterStore(ABC):

    @abstractmethod
    def list_roster(self, user_id: str) -> List[TrackedApplication]:
        """Full snapshot of the user's roster. Raises RosterReadFailure."""

    @abstractmethod
    def create_entry(self, user_id: str, application: TrackedApplication) -> int:
        """Append an entry and return its row identity. Raises RosterWriteFailure."""

    @abstractmethod
    def update_entry(self, user_id: str, row_identity: int, application: TrackedApplication) -> None:
        """Overwrite the entry at row_identity. Raises RosterWriteFailure."""


class InMemoryRosterStore(RosterStore):
    """Dict-backed store. Row identities start at 2 to match the sheet layout."""

    FIRST_ROW = 2

    def __init__(self, rosters: Optional[Dict[str, List[TrackedApplication]]] = None):
        self._rows: Dict[str, Dict[int, TrackedApplication]] = {}
        for user_id, entries in (rosters or {}).items():
            for entry in entries:
                self.create_entry(user_id, entry)

    def list_roster(self, user_id: str) -> List[TrackedApplication]:
        rows = self._rows.get(user_id, {})
        return [replace(app, row_identity=row) for row, app in sorted(rows.items())]

    def create_entry(self, user_id: str, application: TrackedApplication) -> int:
        rows = self._rows.setdefault(user_id, {})
        row = max(rows, default=self.FIRST_ROW - 1) + 1
        rows[row] = replace(application, row_identity=row)
        return row

    def update_entry(self, user_id: str, row_identity: int, application: TrackedApplication) -> None:
        rows = self._rows.get(user_id, {})
        if row_identity not in rows:
            raise RosterWriteFailure(f"No row {row_identity} for user {user_id}")
        rows[row_identity] = replace(application, row_identity=row_identity)


class DryRunRosterStore(RosterStore):
    """Reads through to a real store; logs writes instead of performing them."""

    def __init__(self, wrapped: RosterStore):
        self.wrapped = wrapped
        self._next_row: Dict[str, int] = {}

    def list_roster(self, user_id: str) -> List[TrackedApplication]:
        roster = self.wrapped.list_roster(user_id)
        last = max((a.row_identity or 0 for a in roster), default=InMemoryRosterStore.FIRST_ROW - 1)
        self._next_row[user_id] = last + 1
        return roster

    def create_entry(self, user_id: str, application: TrackedApplication) -> int:
        row = self._next_row.get(user_id, InMemoryRosterStore.FIRST_ROW)
        self._next_row[user_id] = row + 1
        log.info(
            "dry_run_create",
            user_id=user_id,
            row=row,
            job_title=application.job_title,
            company=application.company_name,
            status=application.status.value,
        )
        return row

    def update_entry(self, user_id: str, row_identity: int, application: TrackedApplication) -> None:
        log.info(
            "dry_run_update",
            user_id=user_id,
            row=row_identity,
            job_title=application.job_title,
            company=application.company_name,
            status=application.status.value,
        )
