from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from playwright.sync_api import Browser, Page, sync_playwright

from meroshare_ipo_bot.portal.client import MeroShareClient, PortalCredentials


ASBA_TABS = """
<ul class="nav nav-tabs">
  <li><a href="#">Apply for Issue</a></li>
  <li><a href="#">Current Issue</a></li>
  <li><a href="#">Application Report</a></li>
</ul>
"""


@pytest.fixture(scope="module")
def browser() -> Iterator[Browser]:
    with sync_playwright() as p:
        try:
            b = p.chromium.launch(headless=True)
        except Exception as e:
            pytest.skip(f"Chromium is not installed (run `playwright install chromium`): {e}")
        try:
            yield b
        finally:
            b.close()


@pytest.fixture
def page(browser: Browser) -> Iterator[Page]:
    ctx = browser.new_context()
    try:
        yield ctx.new_page()
    finally:
        ctx.close()


@pytest.fixture
def client(tmp_path: Path) -> MeroShareClient:
    return MeroShareClient(
        base_url="https://meroshare.example/",
        creds=PortalCredentials(username="user1", password="secret", dp="13700"),
        debug_dir=str(tmp_path / "debug"),
    )


def test_urls_are_built_from_base(client: MeroShareClient) -> None:
    assert client.login_url == "https://meroshare.example/#/login"
    assert client.asba_url == "https://meroshare.example/#/asba"


def test_apply_for_issue_tab_is_not_an_open_issue(page: Page, client: MeroShareClient) -> None:
    page.set_content(f"<body>{ASBA_TABS}<div class='company-list'></div></body>")

    target = client.find_apply_button(page, timeout_ms=300)
    assert target.found is False
    assert target.reason == "No Apply button on My ASBA page"


def test_no_record_short_circuits_apply_search(page: Page, client: MeroShareClient) -> None:
    page.set_content(
        f"""
        <body>{ASBA_TABS}
          <table class="table"><tbody><tr><td>No Record(s) Found</td></tr></tbody></table>
          <button class="btn-issue" type="button">Apply</button>
        </body>
        """
    )
    target = client.find_apply_button(page, timeout_ms=300)
    assert target.found is False
    assert target.reason == "No Record(s) Found"


def test_open_issue_row_is_found_and_described(page: Page, client: MeroShareClient) -> None:
    page.set_content(
        f"""
        <body>{ASBA_TABS}
          <div class="company-list">
            <div>Himalayan Hydropower Ltd.</div>
            <div>Ordinary Shares</div>
            <div>General Public</div>
            <div>IPO</div>
            <button class="btn-issue" type="button">Apply</button>
          </div>
        </body>
        """
    )
    target = client.find_apply_button(page, timeout_ms=300)
    assert target.found is True
    assert target.selector == "button.btn-issue"
    assert target.text == "Apply"

    details = client.read_issue_details(page, target)
    assert details.name == "Himalayan Hydropower Ltd."
    assert details.issue_type == "IPO"
    assert details.identifiable is True


def test_table_fallback_skips_header_row(page: Page, client: MeroShareClient) -> None:
    page.set_content(
        """
        <body>
          <table class="table">
            <thead><tr><th>Issue Name</th><th>Issue Manager</th><th>Issue Type</th></tr></thead>
            <tbody><tr><td>Sanima Hydro Ltd.</td><td>NIC Asia Capital</td><td>IPO</td></tr></tbody>
          </table>
          <a href="#" onclick="return false;">Apply</a>
        </body>
        """
    )
    target = client.find_apply_button(page, timeout_ms=300)
    assert target.found is True

    # the anchor has no row ancestor, so details come from the table body
    details = client.read_issue_details(page, target)
    assert details.name == "Sanima Hydro Ltd."
    assert details.issue_type == "IPO"
    assert details.identifiable is True


def test_error_toast_is_a_failed_application(page: Page, client: MeroShareClient) -> None:
    page.set_content(
        """
        <body>
          <div id="toast-container">
            <div class="toast toast-error"><div class="toast-message">Invalid transaction PIN</div></div>
          </div>
        </body>
        """
    )
    status = client.check_application_status(page)
    assert status.success is False
    assert status.message == "Invalid transaction PIN"


def test_success_toast_is_a_successful_application(page: Page, client: MeroShareClient) -> None:
    page.set_content(
        """
        <body>
          <div id="toast-container">
            <div class="toast toast-success"><div class="toast-message">Share has been applied successfully.</div></div>
          </div>
        </body>
        """
    )
    status = client.check_application_status(page)
    assert status.success is True
    assert status.message == "Share has been applied successfully."
