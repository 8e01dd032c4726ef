from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    MeroShare is an Angular SPA; its markup changes without notice.
    Keep all UI selectors/text hooks here, ordered most specific first. Callers try each in turn.
    """

    # Login page
    login_ready: tuple[str, ...] = ("form", "input#username", "select2#selectBranch")
    dp_ready: tuple[str, ...] = ("span.select2-container", "select2#selectBranch", "form")
    dp_select2_containers: tuple[str, ...] = (
        'span.select2-container:has-text("Select your DP")',
        'span.select2-selection:has-text("Select your DP")',
        'span.select2-selection__rendered:has-text("Select your DP")',
        "select2#selectBranch + span.select2-container",
        "span.select2-container",
    )
    dp_select2_search: str = "input.select2-search__field"
    dp_select2_options: str = "li.select2-results__option"
    dp_native_selects: tuple[str, ...] = (
        "select#selectBranch",
        'select[name*="dp" i]',
        'select[id*="dp" i]',
        'select[class*="dp" i]',
        "select",
        '[role="combobox"]',
        'input[role="combobox"]',
    )
    dp_custom_dropdowns: tuple[str, ...] = (
        "ng-select",
        "ng-select .ng-select-container",
        "ng-select .ng-arrow-wrapper",
        'div[class*="select" i]',
        'div[class*="dropdown" i]',
        '[aria-haspopup="listbox"]',
        'div[class*="ng-select"]',
        'div[class*="form-control"][class*="select"]',
        'div:has-text("Select your DP")',
        'div:has-text("Select DP")',
        'label:has-text("DP") + *',
        'label:has-text("Depository") + *',
    )
    dp_custom_options: tuple[str, ...] = (
        '[role="option"]',
        "ng-option",
        ".ng-option",
        "li",
        'div[class*="option"]',
    )

    username_ready: tuple[str, ...] = ("input#username", 'input[name="username"]', 'input[type="text"]')
    username_inputs: tuple[str, ...] = (
        "input#username",
        'input[name="username"]',
        'input[name="email"]',
        'input[type="text"]',
        'input[id*="user"]',
        'input[id*="email"]',
        'input[placeholder*="user" i]',
        'input[placeholder*="email" i]',
    )
    password_inputs: tuple[str, ...] = (
        "input#password",
        'input[name="password"]',
        'input[type="password"]',
        'input[id*="pass"]',
    )
    login_buttons: tuple[str, ...] = (
        'button[type="submit"]',
        'button:has-text("Login")',
        'button:has-text("Sign in")',
        'button:has-text("Log in")',
        'input[type="submit"]',
        "button.btn-primary",
        "button.btn-login",
        "button.login-btn",
    )
    # Used to blank the credential inputs before any screenshot is written.
    credential_inputs: str = (
        'input[type="password"], input[name*="password" i], '
        'input[name*="username" i], input[id*="username" i]'
    )

    # Login outcome
    login_success_markers: tuple[str, ...] = (
        'a:has-text("My ASBA")',
        'a:has-text("Dashboard")',
        'a:has-text("Profile")',
        '[class*="dashboard" i]',
        '[class*="profile" i]',
        'text="My ASBA"',
    )
    login_error_markers: tuple[str, ...] = (
        "#toast-container .toast-error",
        ".error",
        ".alert-danger",
        ".alert-error",
        ".alert-warning",
        '[role="alert"]',
        ".invalid-feedback",
        '[class*="error" i]',
        '[class*="danger" i]',
        "text=/invalid/i",
        "text=/incorrect/i",
        "text=/failed/i",
        "text=/wrong/i",
    )
    login_error_message: str = (
        '#toast-container .toast-message, .toast-error, .error, .alert-danger, [role="alert"]'
    )
    captcha_blockers: tuple[str, ...] = (
        '[class*="captcha" i]',
        '[id*="captcha" i]',
        'iframe[src*="recaptcha"]',
        'iframe[src*="captcha"]',
        "text=/captcha/i",
    )

    # Navigation
    my_asba_wait: str = 'a:has-text("My ASBA"), *:has-text("My ASBA")'
    my_asba_links: tuple[str, ...] = (
        'a:has-text("My ASBA")',
        'button:has-text("My ASBA")',
        'a[href*="asba" i]',
        'li:has-text("My ASBA")',
        'nav a:has-text("My ASBA")',
        'menu a:has-text("My ASBA")',
        "text=My ASBA",
        "text=/My ASBA/i",
    )

    # My ASBA page
    asba_ready: tuple[str, ...] = (".company-list", "table", ".table", '[class*="asba" i]')
    no_record_markers: tuple[str, ...] = (
        '*:has-text("No Record(s) Found")',
        '*:has-text("No Record")',
        "text=/No Record/i",
    )
    apply_buttons: tuple[str, ...] = (
        "button.btn-issue",
        'button:has-text("Apply")',
        'a:has-text("Apply")',
        'button[type="button"]:has-text("Apply")',
        'button[type="submit"]:has-text("Apply")',
        '[class*="apply" i]',
        '[id*="apply" i]',
        "text=/Apply/i",
    )
    # Tab headers on the ASBA page that contain the word "Apply" but are not an open issue.
    apply_tab_labels: tuple[str, ...] = ("Apply for Issue",)
    issue_row_ancestors: tuple[str, ...] = (
        'xpath=ancestor::*[contains(@class, "company-list")][1]',
        "xpath=ancestor::tr[1]",
        'xpath=ancestor::*[contains(@class, "row")][1]',
    )
    issue_table_rows: str = "table tbody tr, .table tbody tr"

    # Application form, step 1
    form_ready: tuple[str, ...] = (
        "select#selectBank",
        "form",
        'input[type="number"]',
        'input[name*="kitta" i]',
        'input[name*="quantity" i]',
        'input[name*="unit" i]',
        'input[type="text"]',
    )
    bank_selects: tuple[str, ...] = ("select#selectBank", 'select[name*="bank" i]', 'select[id*="bank" i]')
    account_selects: tuple[str, ...] = (
        "select#accountNumber",
        'select[name*="account" i]',
        'select[id*="account" i]',
    )
    quantity_inputs: tuple[str, ...] = (
        "input#appliedKitta",
        'input[name*="kitta" i]',
        'input[name*="quantity" i]',
        'input[name*="unit" i]',
        'input[name*="share" i]',
        'input[type="number"]',
        'input[id*="quantity" i]',
        'input[id*="unit" i]',
    )
    crn_inputs: tuple[str, ...] = (
        "input#crnNumber",
        'input[name*="crn" i]',
        'input[id*="crn" i]',
        'input[placeholder*="crn" i]',
    )
    disclaimer_checkboxes: tuple[str, ...] = (
        "input#disclaimer",
        'input[type="checkbox"][name*="disclaimer" i]',
        'input[type="checkbox"]',
    )
    proceed_buttons: tuple[str, ...] = (
        'button:has-text("Proceed")',
        'button:has-text("Next")',
        'button:has-text("Continue")',
    )

    # Application form, step 2
    pin_inputs: tuple[str, ...] = (
        "input#transactionPIN",
        'input[name*="pin" i]',
        'input[id*="pin" i]',
        'input[type="password"]',
        'input[placeholder*="pin" i]',
    )
    submit_buttons: tuple[str, ...] = (
        'button[type="submit"]',
        'button:has-text("Submit")',
        'button:has-text("Apply")',
        'button:has-text("Confirm")',
        'button:has-text("Proceed")',
        'input[type="submit"]',
        "button.btn-primary",
        "button.btn-submit",
        'a:has-text("Submit")',
        'a:has-text("Apply")',
    )

    # Application outcome
    status_success_markers: tuple[str, ...] = (
        "#toast-container .toast-success",
        ".alert-success",
        ".success",
        '[class*="success" i]',
    )
    status_error_markers: tuple[str, ...] = (
        "#toast-container .toast-error",
        ".alert-danger",
        ".error",
        '[class*="error" i]',
    )
