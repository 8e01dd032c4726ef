from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional

import pytest

from meroshare_ipo_bot.config import AppConfig
from meroshare_ipo_bot.models import ApplicationForm, ApplicationStatus, ApplyTarget, FillResult, IssueDetails
from meroshare_ipo_bot.portal.client import LoginFailedError
from meroshare_ipo_bot.state import StateStore
from meroshare_ipo_bot.workflow import PAGE_CLOSED_MESSAGE, run_check


def _cfg(*, crn: str = "CRN-1", pin: str = "1234", quantity: int = 10) -> AppConfig:
    return AppConfig.model_validate(
        {
            "meroshare": {"username": "u", "password": "p", "dp": "13700"},
            "ipo": {"quantity": quantity, "crn": crn, "pin": pin},
        }
    )


class FakePage:
    def __init__(self) -> None:
        self.closed = False

    def is_closed(self) -> bool:
        return self.closed


class FakeClient:
    def __init__(
        self,
        *,
        found: bool = True,
        status: Optional[ApplicationStatus] = None,
        login_error: Optional[Exception] = None,
        close_page_on_submit: bool = False,
        issue: Optional[IssueDetails] = None,
    ) -> None:
        self.found = found
        self.issue = issue or IssueDetails(name="Himalayan Hydropower Ltd.", issue_type="IPO", share_group="Ordinary Shares")
        self.status = status or ApplicationStatus(success=True, message="Share has been applied successfully.")
        self.login_error = login_error
        self.close_page_on_submit = close_page_on_submit
        self.calls: List[str] = []
        self.form: Optional[ApplicationForm] = None
        self.page = FakePage()

    @contextmanager
    def open_page(self, *, headless: bool = True, slow_mo_ms: int = 0) -> Iterator[FakePage]:
        self.calls.append("open_page")
        yield self.page

    def login(self, page: Any) -> None:
        self.calls.append("login")
        if self.login_error:
            raise self.login_error

    def open_my_asba(self, page: Any) -> None:
        self.calls.append("open_my_asba")

    def find_apply_button(self, page: Any) -> ApplyTarget:
        self.calls.append("find_apply_button")
        if not self.found:
            return ApplyTarget(found=False, reason="No Record(s) Found")
        return ApplyTarget(found=True, locator=object(), text="Apply", selector="button.btn-issue")

    def read_issue_details(self, page: Any, target: ApplyTarget) -> IssueDetails:
        self.calls.append("read_issue_details")
        return self.issue

    def click_apply(self, page: Any, target: ApplyTarget) -> None:
        self.calls.append("click_apply")

    def fill_application(self, page: Any, form: ApplicationForm) -> FillResult:
        self.calls.append("fill_application")
        self.form = form
        return FillResult(quantity_filled=True, crn_filled=True, pin_filled=True)

    def submit_application(self, page: Any) -> bool:
        self.calls.append("submit_application")
        if self.close_page_on_submit:
            page.closed = True
        return True

    def check_application_status(self, page: Any) -> ApplicationStatus:
        self.calls.append("check_application_status")
        return self.status


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: List[tuple] = []

    def notify_no_issue(self) -> bool:
        self.sent.append(("no_issue",))
        return True

    def notify_issue_available(self, issue_name: str = "") -> bool:
        self.sent.append(("available", issue_name))
        return True

    def notify_application_status(self, status: str, details: str = "") -> bool:
        self.sent.append(("status", status, details))
        return True

    def notify_error(self, error: str) -> bool:
        self.sent.append(("error", error))
        return True


def test_no_issue_notifies_and_stops() -> None:
    client, notifier = FakeClient(found=False), FakeNotifier()
    result = run_check(_cfg(), client=client, notifier=notifier)

    assert result.outcome == "no_issue"
    assert notifier.sent == [("no_issue",)]
    assert "click_apply" not in client.calls


def test_issue_found_without_crn_pin_only_reports() -> None:
    client, notifier = FakeClient(), FakeNotifier()
    result = run_check(_cfg(crn="", pin=""), client=client, notifier=notifier)

    assert result.outcome == "issue_found"
    assert result.issue is not None and result.issue.name == "Himalayan Hydropower Ltd."
    assert notifier.sent == [("available", "Himalayan Hydropower Ltd.")]
    assert "click_apply" not in client.calls


def test_check_only_never_applies() -> None:
    client, notifier = FakeClient(), FakeNotifier()
    result = run_check(_cfg(), client=client, notifier=notifier, apply=False)
    assert result.outcome == "issue_found"
    assert "fill_application" not in client.calls


def test_apply_success_flow(tmp_path: Path) -> None:
    client, notifier = FakeClient(), FakeNotifier()
    with StateStore(str(tmp_path / "state.db")) as state:
        result = run_check(_cfg(quantity=10), client=client, notifier=notifier, state=state, quantity=20)
        assert state.has_successful_application(result.issue.issue_key())

    assert result.outcome == "applied"
    assert client.calls == [
        "open_page",
        "login",
        "open_my_asba",
        "find_apply_button",
        "read_issue_details",
        "click_apply",
        "fill_application",
        "submit_application",
        "check_application_status",
    ]
    assert client.form is not None
    assert client.form.quantity == 20
    assert client.form.crn == "CRN-1"
    assert client.form.pin == "1234"
    assert notifier.sent[-1] == ("status", "success", "Share has been applied successfully.")


def test_apply_failure_is_reported_not_raised(tmp_path: Path) -> None:
    client = FakeClient(status=ApplicationStatus(success=False, message="Invalid transaction PIN"))
    notifier = FakeNotifier()
    with StateStore(str(tmp_path / "state.db")) as state:
        result = run_check(_cfg(), client=client, notifier=notifier, state=state)
        assert not state.has_successful_application(result.issue.issue_key())

    assert result.outcome == "apply_failed"
    assert notifier.sent[-1] == ("status", "failed", "Invalid transaction PIN")


def test_page_closed_after_submit_counts_as_success() -> None:
    client, notifier = FakeClient(close_page_on_submit=True), FakeNotifier()
    result = run_check(_cfg(), client=client, notifier=notifier)

    assert result.outcome == "applied"
    assert "check_application_status" not in client.calls
    assert notifier.sent[-1] == ("status", "success", PAGE_CLOSED_MESSAGE)


def test_already_applied_issue_is_skipped(tmp_path: Path) -> None:
    with StateStore(str(tmp_path / "state.db")) as state:
        first = run_check(_cfg(), client=FakeClient(), notifier=FakeNotifier(), state=state)
        assert first.outcome == "applied"

        client = FakeClient()
        second = run_check(_cfg(), client=client, notifier=FakeNotifier(), state=state)

    assert second.outcome == "already_applied"
    assert "click_apply" not in client.calls


@pytest.mark.parametrize(
    "issue",
    [
        IssueDetails(),
        IssueDetails(name="Issue Name", raw_text="Issue Name\tIssue Manager\tIssue Type\tShare Type"),
    ],
)
def test_unreadable_issue_is_applied_without_guard(tmp_path: Path, issue: IssueDetails) -> None:
    with StateStore(str(tmp_path / "state.db")) as state:
        # An earlier application recorded under the same blank key must not block this one.
        state.record_application(issue_key=issue.issue_key(), issue_name="", quantity=10, ok=True)

        first = run_check(_cfg(), client=FakeClient(issue=issue), notifier=FakeNotifier(), state=state)
        client = FakeClient(issue=issue)
        second = run_check(_cfg(), client=client, notifier=FakeNotifier(), state=state)

        assert len(state.list_applications()) == 1

    assert first.outcome == "applied"
    assert second.outcome == "applied"
    assert "submit_application" in client.calls


def test_errors_are_notified_and_reraised() -> None:
    client = FakeClient(login_error=LoginFailedError("Login failed: Invalid username or password"))
    notifier = FakeNotifier()
    with pytest.raises(LoginFailedError):
        run_check(_cfg(), client=client, notifier=notifier)

    assert notifier.sent == [("error", "Login failed: Invalid username or password")]
