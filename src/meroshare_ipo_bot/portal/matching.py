"""
Text heuristics used against MeroShare's DOM.

Everything here is pure (no Playwright), so dropdown matching and page classification can be unit tested
against captured page text.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from ..models import IssueDetails


_CODE_RE = re.compile(r"\((\d{3,6})\)")
_PAREN_RE = re.compile(r"\([^)]*\)")
_NON_WORD_RE = re.compile(r"[^a-z0-9]+")
_NO_RECORD_RE = re.compile(r"No Record", re.I)
_PLACEHOLDER_RE = re.compile(r"^\s*(?:--\s*)?(?:select|choose)\b", re.I)

_CORPORATE_SUFFIXES = frozenset({"limited", "ltd", "pvt", "private", "co", "company", "inc"})

_SUCCESS_RE = re.compile(r"\b(success(?:fully)?|applied|submitted)\b", re.I)
_ERROR_RE = re.compile(r"\b(error|failed|failure|invalid|incorrect)\b", re.I)

_ISSUE_TYPES = (
    ("IPO", re.compile(r"\bIPO\b|initial public offering", re.I)),
    ("FPO", re.compile(r"\bFPO\b|further public offering", re.I)),
    ("Right Share", re.compile(r"\bright(?:s)?\s*share|\bright\b", re.I)),
    ("Debenture", re.compile(r"\bdebenture", re.I)),
    ("Mutual Fund", re.compile(r"\bmutual\s+fund", re.I)),
)
_SHARE_GROUP_RE = re.compile(r"\b(ordinary shares?|preference shares?|units?)\b", re.I)
_SUB_GROUP_RE = re.compile(
    r"\b(general public|for nepalese citizens working abroad|foreign employment|locals?|"
    r"project affected|employees?|mutual funds?)\b",
    re.I,
)
_ROW_NOISE = frozenset({"apply", "edit", "reapply", "view", "report"})


def normalize_name(text: str) -> str:
    """
    Normalize a bank/DP name for comparison.

    "NABIL BANK LIMITED (13700)" and "Nabil Bank Ltd." both normalize to "nabil bank".
    """
    s = (text or "").lower().replace("&", " and ")
    s = _PAREN_RE.sub(" ", s)
    s = _NON_WORD_RE.sub(" ", s)
    tokens = [t for t in s.split() if t not in _CORPORATE_SUFFIXES]
    return " ".join(tokens)


def extract_code(text: str) -> Optional[str]:
    m = _CODE_RE.search(text or "")
    return m.group(1) if m else None


def is_placeholder_option(text: str) -> bool:
    s = (text or "").strip()
    return not s or bool(_PLACEHOLDER_RE.match(s))


def match_score(option: str, wanted: str) -> int:
    if is_placeholder_option(option):
        return 0

    wanted_s = (wanted or "").strip()
    if not wanted_s:
        return 0

    # A bare DP code ("13700") or a name that carries one.
    wanted_code = wanted_s if wanted_s.isdigit() else extract_code(wanted_s)
    option_code = extract_code(option)

    norm_opt = normalize_name(option)
    norm_want = normalize_name(wanted_s)

    if norm_want and norm_opt == norm_want:
        return 100
    if wanted_code and option_code and wanted_code == option_code:
        return 95
    if not norm_want or not norm_opt:
        return 0

    opt_tokens = set(norm_opt.split())
    want_tokens = set(norm_want.split())
    if want_tokens <= opt_tokens:
        return max(61, 80 - (len(opt_tokens) - len(want_tokens)))
    if norm_want in norm_opt:
        return 60

    overlap = len(opt_tokens & want_tokens) / len(want_tokens)
    if overlap >= 0.5:
        return int(overlap * 50)
    return 0


def pick_best_option(options: Sequence[str], wanted: str) -> Optional[int]:
    """
    Return the index of the option that best matches `wanted`, or None when nothing plausible matches.
    Ties keep the earliest option.
    """
    best_idx: Optional[int] = None
    best_score = 0
    for idx, opt in enumerate(options):
        score = match_score(opt, wanted)
        if score > best_score:
            best_idx, best_score = idx, score
    return best_idx


def first_real_option(options: Sequence[str]) -> Optional[int]:
    for idx, opt in enumerate(options):
        if not is_placeholder_option(opt):
            return idx
    return None


def looks_like_no_record(text: str) -> bool:
    return bool(_NO_RECORD_RE.search(text or ""))


def classify_status_text(text: str) -> Optional[bool]:
    """
    True for success wording, False for error wording, None when the text says neither.
    Error wording wins: "Application failed. Please try again after successful login" is a failure.
    """
    s = text or ""
    if _ERROR_RE.search(s):
        return False
    if _SUCCESS_RE.search(s):
        return True
    return None


def parse_issue_text(text: str) -> IssueDetails:
    """
    Parse the visible text of an open-issue card/row on the My ASBA page, e.g.:

        Himalayan Hydropower Ltd.
        Ordinary Shares
        General Public
        IPO
        Apply
    """
    raw = (text or "").strip()
    lines = [ln.strip() for ln in re.split(r"[\r\n\t]+", raw) if ln.strip()]

    issue_type = ""
    for label, pattern in _ISSUE_TYPES:
        if pattern.search(raw):
            issue_type = label
            break

    m = _SHARE_GROUP_RE.search(raw)
    share_group = m.group(1).title() if m else ""
    m = _SUB_GROUP_RE.search(raw)
    sub_group = m.group(1).title() if m else ""

    name = ""
    for ln in lines:
        low = ln.lower()
        if low in _ROW_NOISE:
            continue
        if issue_type and low == issue_type.lower():
            continue
        if _SHARE_GROUP_RE.fullmatch(ln) or _SUB_GROUP_RE.fullmatch(ln):
            continue
        name = ln
        break

    if not name and raw:
        name = re.sub(r"\s+", " ", raw)
    if len(name) > 100:
        name = name[:100].rstrip()

    return IssueDetails(
        name=name,
        issue_type=issue_type,
        share_group=share_group,
        sub_group=sub_group,
        raw_text=raw[:500],
    )
