from __future__ import annotations

import sys
from typing import Any
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


ENV_VARS = (
    "MEROSHARE_BASE_URL",
    "MEROSHARE_USERNAME",
    "MEROSHARE_PASSWORD",
    "MEROSHARE_DP_NP",
    "IPO_QUANTITY",
    "IPO_CRN",
    "IPO_PIN",
    "IPO_BANK",
    "IPO_ACCOUNT_NUMBER",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "SCHEDULE_TIME",
    "SCHEDULE_TIMEZONE",
    "RUN_ON_START",
    "STATE_DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "portal: integration smoke tests that require real MeroShare credentials",
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """
    Config is env-first; start every config test from an empty environment.
    """
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
