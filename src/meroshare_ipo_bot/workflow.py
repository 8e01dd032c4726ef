from __future__ import annotations

import logging
from typing import Optional

from .config import AppConfig
from .models import ApplicationForm, ApplicationStatus, RunResult
from .notify.telegram import TelegramNotifier
from .portal.client import MeroShareClient
from .state import StateStore


logger = logging.getLogger(__name__)

PAGE_CLOSED_MESSAGE = "IPO application submitted successfully (page closed)."


def application_form(cfg: AppConfig, *, quantity: Optional[int] = None) -> ApplicationForm:
    return ApplicationForm(
        quantity=int(quantity or cfg.ipo.quantity),
        crn=cfg.ipo.crn,
        pin=cfg.ipo.pin,
        bank=cfg.ipo.bank,
        account_number=cfg.ipo.account_number,
    )


def run_check(
    cfg: AppConfig,
    *,
    client: MeroShareClient,
    notifier: TelegramNotifier,
    state: Optional[StateStore] = None,
    apply: bool = True,
    quantity: Optional[int] = None,
    headless: bool = True,
    slow_mo_ms: int = 0,
) -> RunResult:
    """
    Log in, look for an open issue on My ASBA, and apply when CRN + PIN are configured.

    Every failure is reported to Telegram and then re-raised.
    """
    with client.open_page(headless=headless, slow_mo_ms=slow_mo_ms) as page:
        try:
            client.login(page)
            client.open_my_asba(page)

            target = client.find_apply_button(page)
            if not target.found:
                logger.info("No open issue (%s).", target.reason or "no Apply button")
                notifier.notify_no_issue()
                return RunResult(outcome="no_issue")

            issue = client.read_issue_details(page, target)
            notifier.notify_issue_available(issue.name or "Unknown IPO")

            if not apply:
                logger.info("Check-only run; not applying.")
                return RunResult(outcome="issue_found", issue=issue)
            if not cfg.ipo.can_apply:
                logger.info("IPO_CRN and IPO_PIN are not both set; not applying.")
                return RunResult(outcome="issue_found", issue=issue)

            issue_key = issue.issue_key() if issue.identifiable else None
            if issue_key is None:
                logger.warning(
                    "Could not read the issue name (got %r); applying without the already-applied check.",
                    issue.name,
                )
            elif state is not None and state.has_successful_application(issue_key):
                logger.info("Already applied to %r; skipping.", issue.name)
                return RunResult(outcome="already_applied", issue=issue)

            form = application_form(cfg, quantity=quantity)
            client.click_apply(page, target)
            client.fill_application(page, form)
            submitted = client.submit_application(page)
            if not submitted:
                logger.warning("No submit control was found; checking the page for an outcome anyway.")

            if page.is_closed():
                status = ApplicationStatus(success=True, message=PAGE_CLOSED_MESSAGE)
            else:
                status = client.check_application_status(page)

            logger.info("Application %s: %s", status.status_text, status.message)
            notifier.notify_application_status(
                status.status_text,
                status.message or "IPO application process completed",
            )
            if state is not None and issue_key is not None:
                state.record_application(
                    issue_key=issue_key,
                    issue_name=issue.name,
                    quantity=form.quantity,
                    ok=status.success,
                    message=status.message,
                )
            return RunResult(
                outcome="applied" if status.success else "apply_failed",
                issue=issue,
                status=status,
            )
        except Exception as e:
            logger.error("Check failed: %s", e)
            notifier.notify_error(str(e))
            raise
