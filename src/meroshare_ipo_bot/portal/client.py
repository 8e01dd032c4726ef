from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

from playwright.sync_api import Page, sync_playwright

from ..models import ApplicationForm, ApplicationStatus, ApplyTarget, FillResult, IssueDetails
from .matching import (
    classify_status_text,
    first_real_option,
    looks_like_no_record,
    parse_issue_text,
    pick_best_option,
)
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)


class LoginFormNotFoundError(RuntimeError):
    """
    Raised when a required login control (username, password, login button) is not on the page.
    """


class LoginFailedError(RuntimeError):
    """
    Raised when credentials were submitted but the portal did not reach an authenticated page.
    """


class NavigationError(RuntimeError):
    pass


class ApplyButtonError(RuntimeError):
    pass


@dataclass(frozen=True)
class PortalCredentials:
    username: str
    password: str
    dp: str = ""

    def __repr__(self) -> str:
        return f"PortalCredentials(username={self.username!r}, dp={self.dp!r})"


class MeroShareClient:
    """
    MeroShare (CDSC) portal automation: login, My ASBA, and the IPO application form.

    Every lookup walks an ordered selector chain from `PortalSelectors` and takes the first visible match;
    a missing candidate is never an error by itself.
    """

    def __init__(
        self,
        *,
        base_url: str,
        creds: PortalCredentials,
        selectors: Optional[PortalSelectors] = None,
        debug_dir: str = "data/debug",
        step_debug: bool = False,
        log_steps: bool = False,
        step_delay_ms: int = 0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.creds = creds
        self.selectors = selectors or PortalSelectors()
        self.debug_dir = debug_dir

        self._step_log_enabled: bool = bool(step_debug or log_steps)
        self._step_debug_enabled: bool = bool(step_debug)
        self._step_counter: int = 0
        self._step_delay_ms: int = int(step_delay_ms or 0)

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/#/login"

    @property
    def asba_url(self) -> str:
        return f"{self.base_url}/#/asba"

    @contextmanager
    def open_page(self, *, headless: bool = True, slow_mo_ms: int = 0) -> Iterator[Page]:
        """
        Launch a browser, open the login route, and yield the page. Everything is closed on exit.
        """
        Path(self.debug_dir).mkdir(parents=True, exist_ok=True)
        self._step_counter = 0

        with sync_playwright() as p:
            # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
            # browser cache is missing (common on fresh servers and in containers).
            slow_mo = int(slow_mo_ms or 0)
            try:
                browser = p.chromium.launch(headless=headless, slow_mo=slow_mo)
            except Exception as e:
                msg = str(e)
                if "Executable doesn't exist" not in msg:
                    raise

                logger.warning(
                    "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
                    msg,
                )
                try:
                    browser = p.chromium.launch(headless=headless, slow_mo=slow_mo, channel="chrome")
                except Exception:
                    browser = p.chromium.launch(headless=headless, slow_mo=slow_mo, channel="msedge")
            try:
                ctx = browser.new_context(color_scheme="light", viewport={"width": 1366, "height": 900})
                try:
                    page = ctx.new_page()
                    self._open_login(page)
                    yield page
                finally:
                    ctx.close()
            finally:
                browser.close()

    def _open_login(self, page: Page) -> None:
        page.goto(self.login_url, wait_until="domcontentloaded", timeout=60_000)
        try:
            page.wait_for_selector(", ".join(self.selectors.login_ready), timeout=15_000)
        except Exception:
            page.wait_for_selector("body", timeout=5_000)
        page.wait_for_timeout(1000)
        self._step(page, name="login_page_opened")

    # ------------------------------------------------------------------ page helpers

    def wait_for_page_ready(self, page: Page, selectors: Sequence[str], *, timeout_ms: int = 10_000) -> None:
        """
        Wait until any of `selectors` is attached. Avoids `networkidle`: the SPA polls in the background.
        """
        if selectors:
            try:
                page.wait_for_selector(", ".join(selectors), state="attached", timeout=timeout_ms)
                return
            except Exception:
                pass

        try:
            page.wait_for_load_state("load", timeout=5_000)
        except Exception:
            page.wait_for_timeout(1000)

    def _first_visible(self, page: Page, selectors: Sequence[str], *, timeout_ms: int = 0):
        """
        Return `(selector, locator)` for the first selector whose first match is visible, polling until
        `timeout_ms`. Earlier selectors win within a poll.
        """
        deadline = time.time() + max(0, timeout_ms) / 1000
        while True:
            for selector in selectors:
                try:
                    loc = page.locator(selector).first
                    if loc.is_visible():
                        return selector, loc
                except Exception:
                    continue
            if time.time() >= deadline:
                return None
            page.wait_for_timeout(250)

    def _wait(self, page: Page, ms: int) -> None:
        # The portal sometimes closes the tab after a submit; a closed page is not an error here.
        try:
            if not page.is_closed():
                page.wait_for_timeout(ms)
        except Exception:
            pass

    def _fill_first(self, page: Page, selectors: Sequence[str], value: str, *, timeout_ms: int = 2_000) -> bool:
        hit = self._first_visible(page, selectors, timeout_ms=timeout_ms)
        if hit is None:
            return False
        selector, field = hit
        try:
            field.clear()
            field.fill(value)
        except Exception:
            logger.debug("Failed to fill selector=%s", selector, exc_info=True)
            return False
        return True

    def _click_first(self, page: Page, selectors: Sequence[str], *, timeout_ms: int = 3_000) -> Optional[str]:
        hit = self._first_visible(page, selectors, timeout_ms=timeout_ms)
        if hit is None:
            return None
        selector, element = hit
        element.click()
        return selector

    def _check_first(self, page: Page, selectors: Sequence[str], *, timeout_ms: int = 2_000) -> bool:
        hit = self._first_visible(page, selectors, timeout_ms=timeout_ms)
        if hit is None:
            return False
        selector, box = hit
        try:
            if not box.is_checked():
                box.check()
        except Exception:
            logger.debug("Failed to check selector=%s", selector, exc_info=True)
            return False
        return True

    def _select_dropdown(self, page: Page, selectors: Sequence[str], wanted: str, *, what: str) -> bool:
        """
        Pick an `<option>` from the first visible native select.

        With `wanted` set, only a fuzzy match is accepted; without it the first real option is chosen.
        """
        for selector in selectors:
            try:
                dropdown = page.locator(selector).first
                if not dropdown.is_visible():
                    continue
                labels = dropdown.locator("option").all_inner_texts()
                if wanted:
                    idx = pick_best_option(labels, wanted)
                    if idx is None:
                        logger.warning("No %s option matched %r (options=%d).", what, wanted, len(labels))
                        return False
                else:
                    idx = first_real_option(labels)
                    if idx is None:
                        continue
                dropdown.select_option(index=idx)
                logger.info("Selected %s: %s", what, labels[idx].strip())
                return True
            except Exception:
                logger.debug("Dropdown selector failed (%s): %s", what, selector, exc_info=True)
                continue
        return False

    # ------------------------------------------------------------------ login

    def select_dp(self, page: Page, dp: str) -> bool:
        """
        Select the Depository Participant on the login form. Never raises; returns False if no strategy worked.
        """
        self.wait_for_page_ready(page, self.selectors.dp_ready, timeout_ms=10_000)
        page.wait_for_timeout(1000)

        for strategy in (self._select_dp_select2, self._select_dp_native, self._select_dp_custom):
            try:
                if strategy(page, dp):
                    logger.info("Selected DP %r (%s)", dp, strategy.__name__.lstrip("_"))
                    page.wait_for_timeout(500)
                    return True
            except Exception:
                logger.debug("DP strategy %s failed.", strategy.__name__, exc_info=True)

        logger.warning("Could not select DP %r; continuing with login.", dp)
        page.wait_for_timeout(500)
        return False

    def _select_dp_select2(self, page: Page, dp: str) -> bool:
        sel = self.selectors
        for selector in sel.dp_select2_containers:
            try:
                container = page.locator(selector).first
                if not container.is_visible():
                    continue
                container.click()
                page.wait_for_timeout(1000)

                options = page.locator(sel.dp_select2_options)
                search = page.locator(sel.dp_select2_search).first
                searched = False
                if search.is_visible():
                    search.fill(_dp_search_term(dp))
                    searched = True
                    page.wait_for_timeout(500)

                idx = pick_best_option(options.all_inner_texts(), dp)
                if idx is None and searched:
                    # The search box does substring matching; a loosely typed name can filter everything out.
                    search.fill("")
                    page.wait_for_timeout(500)
                    idx = pick_best_option(options.all_inner_texts(), dp)

                if idx is not None:
                    options.nth(idx).click()
                    return True

                page.keyboard.press("Escape")
            except Exception:
                continue
        return False

    def _select_dp_native(self, page: Page, dp: str) -> bool:
        for selector in self.selectors.dp_native_selects:
            try:
                dropdown = page.locator(selector).first
                if not dropdown.is_visible():
                    continue
                tag = dropdown.evaluate("el => el.tagName.toLowerCase()")
                if tag == "select":
                    idx = pick_best_option(dropdown.locator("option").all_inner_texts(), dp)
                    if idx is not None:
                        dropdown.select_option(index=idx)
                        return True
                    continue

                dropdown.click()
                page.wait_for_timeout(500)
                if self._click_best_option(page, ("option", '[role="option"]'), dp):
                    return True
            except Exception:
                continue
        return False

    def _select_dp_custom(self, page: Page, dp: str) -> bool:
        for selector in self.selectors.dp_custom_dropdowns:
            try:
                dropdown = page.locator(selector).first
                if not dropdown.is_visible():
                    continue
                dropdown.click()
                page.wait_for_timeout(1000)
                if self._click_best_option(page, self.selectors.dp_custom_options, dp):
                    return True
            except Exception:
                continue
        return False

    def _click_best_option(self, page: Page, option_selectors: Sequence[str], wanted: str) -> bool:
        for selector in option_selectors:
            try:
                options = page.locator(selector)
                if options.count() <= 0:
                    continue
                idx = pick_best_option(options.all_inner_texts(), wanted)
                if idx is None:
                    continue
                cand = options.nth(idx)
                if cand.is_visible():
                    cand.click()
                    return True
            except Exception:
                continue
        return False

    def fill_login_form(self, page: Page, *, username: str, password: str) -> None:
        sel = self.selectors
        self.wait_for_page_ready(page, sel.username_ready, timeout_ms=10_000)
        page.wait_for_timeout(500)

        if not self._fill_first(page, sel.username_inputs, username, timeout_ms=3_000):
            self._save_debug(page, name_prefix="login_username_not_found")
            raise LoginFormNotFoundError("Could not find username field")
        self._step(page, name="username_filled")

        if not self._fill_first(page, sel.password_inputs, password, timeout_ms=3_000):
            self._save_debug(page, name_prefix="login_password_not_found")
            raise LoginFormNotFoundError("Could not find password field")
        self._step(page, name="password_filled")

    def click_login_button(self, page: Page) -> None:
        if self._click_first(page, self.selectors.login_buttons, timeout_ms=3_000) is None:
            self._save_debug(page, name_prefix="login_button_not_found")
            raise LoginFormNotFoundError("Could not find login button")

    def login(self, page: Page) -> None:
        if self.creds.dp:
            self.select_dp(page, self.creds.dp)
            self._step(page, name="dp_selected")

        self.fill_login_form(page, username=self.creds.username, password=self.creds.password)
        self.click_login_button(page)
        page.wait_for_timeout(2000)

        if not self.is_login_successful(page):
            reason = self._login_failure_reason(page)
            self._save_debug(page, name_prefix="login_failure")
            raise LoginFailedError(f"Login failed: {reason}" if reason else "Login failed")

        logger.info("Logged in to MeroShare (url=%s)", page.url)
        self._step(page, name="login_complete")

    def is_login_successful(self, page: Page) -> bool:
        sel = self.selectors
        page.wait_for_timeout(2000)

        if "login" not in (page.url or "").lower():
            return True

        if self._first_visible(page, sel.login_success_markers, timeout_ms=2_000) is not None:
            return True

        if self._first_visible(page, sel.login_error_markers) is not None:
            return False

        blocker = self._first_visible(page, sel.captcha_blockers)
        if blocker is not None:
            logger.warning("Login appears blocked by a captcha (selector=%s).", blocker[0])
            return False

        self._save_debug(page, name_prefix="login_failed_debug")
        return False

    def _login_failure_reason(self, page: Page) -> Optional[str]:
        """
        Best-effort: the portal's own error text (toast/alert), else a recognizable phrase from the body.
        """
        try:
            text = page.locator(self.selectors.login_error_message).first.text_content(timeout=2_000)
            if text and text.strip():
                return re.sub(r"\s+", " ", text).strip()
        except Exception:
            pass

        try:
            body = page.inner_text("body")
        except Exception:
            return None

        for pattern in (
            r"[^\n]*\b(?:invalid|incorrect)\b[^\n]*",
            r"[^\n]*\baccount\b[^\n]*\b(?:locked|blocked|expired)\b[^\n]*",
            r"[^\n]*\battempts?\s+(?:remaining|left)\b[^\n]*",
        ):
            m = re.search(pattern, body or "", re.I)
            if m:
                return m.group(0).strip()[:200]
        return None

    # ------------------------------------------------------------------ My ASBA

    def open_my_asba(self, page: Page) -> None:
        sel = self.selectors
        try:
            page.wait_for_selector(sel.my_asba_wait, timeout=15_000)
        except Exception:
            try:
                page.wait_for_function("() => !window.location.href.includes('login')", timeout=10_000)
            except Exception:
                self.wait_for_page_ready(page, ("body",), timeout_ms=5_000)
        page.wait_for_timeout(1000)

        clicked = self._click_first(page, sel.my_asba_links, timeout_ms=3_000)
        if clicked is None:
            logger.warning("No visible My ASBA link; navigating directly to %s", self.asba_url)
            page.goto(self.asba_url, wait_until="domcontentloaded")
        page.wait_for_timeout(2000)

        if "asba" not in (page.url or "").lower():
            self._save_debug(page, name_prefix="my_asba_not_found")
            raise NavigationError('Could not find "My ASBA" link/button')
        self._step(page, name="my_asba_open")

    def find_apply_button(self, page: Page, *, timeout_ms: int = 3_000) -> ApplyTarget:
        sel = self.selectors
        page.wait_for_timeout(2000)
        self.wait_for_page_ready(page, sel.asba_ready, timeout_ms=10_000)

        try:
            if looks_like_no_record(page.inner_text("body")):
                return ApplyTarget(found=False, reason="No Record(s) Found")
        except Exception:
            logger.debug("Could not read page text for the No Record check.", exc_info=True)

        if self._first_visible(page, sel.no_record_markers) is not None:
            return ApplyTarget(found=False, reason="No Record(s) Found")

        deadline = time.time() + timeout_ms / 1000
        while True:
            target = self._scan_apply_candidates(page)
            if target is not None:
                logger.info("Found apply control (selector=%s text=%r)", target.selector, target.text)
                self._step(page, name="apply_found")
                return target
            if time.time() >= deadline:
                break
            page.wait_for_timeout(500)

        return ApplyTarget(found=False, reason="No Apply button on My ASBA page")

    def _scan_apply_candidates(self, page: Page) -> Optional[ApplyTarget]:
        tab_labels = {t.lower() for t in self.selectors.apply_tab_labels}
        for selector in self.selectors.apply_buttons:
            try:
                loc = page.locator(selector)
                count = min(int(loc.count()), 20)
            except Exception:
                continue
            for i in range(count):
                cand = loc.nth(i)
                try:
                    if not cand.is_visible():
                        continue
                    text = re.sub(r"\s+", " ", cand.inner_text() or "").strip()
                    if "apply" not in text.lower() or text.lower() in tab_labels:
                        continue
                    tag = cand.evaluate("el => el.tagName.toLowerCase()")
                    if tag in ("button", "a") or cand.get_attribute("onclick"):
                        return ApplyTarget(found=True, locator=cand, text=text, selector=selector)
                except Exception:
                    continue
        return None

    def read_issue_details(self, page: Page, target: ApplyTarget) -> IssueDetails:
        """
        Describe the open issue next to the Apply control. Never raises; returns empty details if unreadable.
        """
        text = ""
        if target.locator is not None:
            for ancestor in self.selectors.issue_row_ancestors:
                try:
                    row = target.locator.locator(ancestor)
                    if row.count() <= 0:
                        continue
                    text = (row.first.inner_text(timeout=2_000) or "").strip()
                    if text:
                        break
                except Exception:
                    continue

        if not text:
            try:
                for row in page.locator(self.selectors.issue_table_rows).all()[:10]:
                    if row.locator("th").count() > 0:
                        continue
                    row_text = (row.inner_text(timeout=2_000) or "").strip()
                    if re.search(r"ipo|issue|company", row_text, re.I):
                        text = row_text
                        break
            except Exception:
                logger.debug("Could not read issue rows.", exc_info=True)

        details = parse_issue_text(text)
        logger.info(
            "Open issue: name=%r type=%r share_group=%r sub_group=%r",
            details.name,
            details.issue_type,
            details.share_group,
            details.sub_group,
        )
        return details

    def click_apply(self, page: Page, target: ApplyTarget) -> None:
        if not target.found or target.locator is None:
            raise ApplyButtonError("Apply button not found or element not available")

        try:
            target.locator.click(timeout=5_000)
        except Exception:
            selector = target.selector or 'button:has-text("Apply"), a:has-text("Apply")'
            element = page.locator(selector).first
            if not element.is_visible():
                self._save_debug(page, name_prefix="apply_click_failed")
                raise ApplyButtonError("Could not click Apply button")
            element.click()
        page.wait_for_timeout(2000)
        self._step(page, name="apply_clicked")

    # ------------------------------------------------------------------ application form

    def fill_application(self, page: Page, form: ApplicationForm) -> FillResult:
        """
        Fill the multi-step application form.

        Step 1: bank, account number, quantity (kitta), CRN, disclaimer, then Proceed.
        Step 2: transaction PIN. Some layouts show the PIN on the first step; it is filled wherever it appears.
        """
        sel = self.selectors
        result = FillResult()

        page.wait_for_timeout(2000)
        self.wait_for_page_ready(page, sel.form_ready, timeout_ms=10_000)

        result.bank_selected = self._select_dropdown(page, sel.bank_selects, form.bank, what="bank")
        if result.bank_selected:
            # The account list is loaded for the selected bank.
            page.wait_for_timeout(1000)
        result.account_selected = self._select_dropdown(
            page, sel.account_selects, form.account_number, what="account number"
        )

        result.quantity_filled = self._fill_first(page, sel.quantity_inputs, str(form.quantity))
        if not result.quantity_filled:
            logger.warning("Quantity field not found; the portal default will be used.")
        if form.crn:
            result.crn_filled = self._fill_first(page, sel.crn_inputs, form.crn)
        result.disclaimer_checked = self._check_first(page, sel.disclaimer_checkboxes)
        self._step(page, name="application_step1_filled")

        if form.pin:
            result.pin_filled = self._fill_first(page, sel.pin_inputs, form.pin, timeout_ms=0)
            if not result.pin_filled:
                proceeded = self._click_first(page, sel.proceed_buttons, timeout_ms=3_000)
                result.proceeded = proceeded is not None
                if result.proceeded:
                    page.wait_for_timeout(2000)
                    self._step(page, name="application_proceeded")
                result.pin_filled = self._fill_first(page, sel.pin_inputs, form.pin, timeout_ms=10_000)
            if not result.pin_filled:
                logger.warning("Transaction PIN field not found.")

        page.wait_for_timeout(1000)
        logger.info("Application form filled: %s", result.model_dump())
        return result

    def submit_application(self, page: Page) -> bool:
        page.wait_for_timeout(1000)

        try:
            clicked = self._click_first(page, self.selectors.submit_buttons, timeout_ms=3_000)
        except Exception:
            logger.debug("Submit click failed.", exc_info=True)
            clicked = None

        if clicked is not None:
            logger.info("Submitted application (selector=%s)", clicked)
            self._wait(page, 3000)
            return True

        if page.is_closed():
            return True
        url = (page.url or "").lower()
        return "asba" not in url and "login" not in url

    def check_application_status(self, page: Page) -> ApplicationStatus:
        sel = self.selectors
        page.wait_for_timeout(2000)

        # Toasts disappear after a few seconds, so poll success and error markers together.
        markers = tuple(sel.status_success_markers) + tuple(sel.status_error_markers)
        hit = self._first_visible(page, markers, timeout_ms=4_000)
        if hit is not None:
            selector, element = hit
            try:
                text = re.sub(r"\s+", " ", element.inner_text() or "").strip()
            except Exception:
                text = ""
            success = selector in sel.status_success_markers
            verdict = classify_status_text(text)
            if verdict is not None:
                success = verdict
            return ApplicationStatus(success=success, message=text[:500])

        try:
            body = page.inner_text("body")
        except Exception:
            body = ""
        verdict = classify_status_text(body)
        if verdict is not None:
            line = _first_line_matching(body, ("success", "applied", "submitted", "error", "failed", "invalid"))
            return ApplicationStatus(success=verdict, message=line)

        url = (page.url or "").lower()
        if "asba" not in url and "login" not in url:
            return ApplicationStatus(success=True, message="Application may have been submitted (URL changed)")

        self._save_debug(page, name_prefix="application_status_unknown")
        return ApplicationStatus(success=False, message="Could not determine application status")

    # ------------------------------------------------------------------ debug

    def _blank_credentials(self, page: Page) -> None:
        try:
            page.locator(self.selectors.credential_inputs).evaluate_all(
                "els => els.forEach(el => { el.value = ''; })"
            )
        except Exception:
            logger.debug("Failed to blank credential inputs.", exc_info=True)

    def _save_debug(self, page: Page, *, name_prefix: str) -> None:
        """
        Failure artifacts (png + html + txt). Credential and PIN inputs are cleared first, so only call
        this once the flow is not going to submit the form anymore.
        """
        try:
            if page.is_closed():
                return
            self._blank_credentials(page)
            page.wait_for_timeout(500)
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(page.content(), encoding="utf-8")
            try:
                (out_dir / f"{name_prefix}.txt").write_text(page.inner_text("body"), encoding="utf-8")
            except Exception:
                pass
        except Exception:
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    def _step(self, page: Page, *, name: str) -> None:
        """
        If enabled, log step-by-step progress and optionally save screenshots.
        """
        if not self._step_log_enabled and not self._step_debug_enabled:
            return

        self._step_counter += 1
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        prefix = f"step_{self._step_counter:02d}_{safe}"

        try:
            logger.info("Step %02d %s (url=%s)", self._step_counter, name, getattr(page, "url", ""))
        except Exception:
            pass

        if not self._step_debug_enabled:
            return

        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{prefix}.png"), full_page=True)
        except Exception:
            logger.debug("Failed to save step screenshot (name=%s).", name, exc_info=True)

        if self._step_delay_ms > 0:
            try:
                page.wait_for_timeout(self._step_delay_ms)
            except Exception:
                pass


def _dp_search_term(dp: str) -> str:
    # select2 filters by case-insensitive substring; a DP code or the leading name words work best.
    s = (dp or "").strip()
    if s.isdigit():
        return s
    words = re.sub(r"\([^)]*\)", " ", s).split()
    return " ".join(words[:2])


def _first_line_matching(text: str, needles: Sequence[str]) -> str:
    for line in (text or "").splitlines():
        low = line.lower()
        if any(n in low for n in needles):
            return line.strip()[:300]
    return ""
