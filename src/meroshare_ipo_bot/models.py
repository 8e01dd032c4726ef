from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


RunOutcome = Literal["no_issue", "issue_found", "already_applied", "applied", "apply_failed"]

# Column headers of the My ASBA table; a "name" equal to one of these was read from the header row.
_HEADER_NAMES = frozenset(
    {"name", "issue name", "company name", "scrip", "issue manager", "issue type", "share type", "share group"}
)


class IssueDetails(BaseModel):
    name: str = ""
    issue_type: str = ""
    share_group: str = ""
    sub_group: str = ""
    raw_text: str = ""

    @property
    def identifiable(self) -> bool:
        """
        True when the parsed name can tell this issue apart from others.
        """
        name = re.sub(r"\s+", " ", (self.name or "").strip().lower())
        return bool(name) and name not in _HEADER_NAMES

    def issue_key(self) -> str:
        # Used to avoid applying twice to the same issue. Keep stable and human-readable.
        base = re.sub(r"\s+", " ", (self.name or "").strip().lower())
        parts = [base, (self.issue_type or "").strip().lower(), (self.share_group or "").strip().lower()]
        return "|".join(parts)


class ApplicationForm(BaseModel):
    quantity: int
    crn: str = Field(default="", repr=False)
    pin: str = Field(default="", repr=False)
    bank: str = ""
    account_number: str = ""


class FillResult(BaseModel):
    bank_selected: bool = False
    account_selected: bool = False
    quantity_filled: bool = False
    crn_filled: bool = False
    disclaimer_checked: bool = False
    proceeded: bool = False
    pin_filled: bool = False


class ApplicationStatus(BaseModel):
    success: bool
    message: str = ""

    @property
    def status_text(self) -> str:
        return "success" if self.success else "failed"


@dataclass
class ApplyTarget:
    """
    Result of looking for an open issue on the My ASBA page.

    `locator` is the live Playwright locator of the Apply control (only valid while the page is open).
    """

    found: bool
    locator: Any = None
    text: str = ""
    selector: str = ""
    reason: str = ""


class RunResult(BaseModel):
    outcome: RunOutcome
    issue: Optional[IssueDetails] = None
    status: Optional[ApplicationStatus] = None
    finished_at: datetime = Field(default_factory=datetime.now)
