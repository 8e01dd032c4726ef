from __future__ import annotations

from pathlib import Path

import pytest

from meroshare_ipo_bot.config import DEFAULT_BASE_URL, load_config


def _write(tmp_path: Path, name: str, text: str) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_env_only_config_defaults(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("MEROSHARE_DP_NP", "NABIL INVESTMENT BANKING LTD. (11000)")

    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg.meroshare.base_url == DEFAULT_BASE_URL
    assert cfg.meroshare.dp == "NABIL INVESTMENT BANKING LTD. (11000)"
    assert cfg.ipo.quantity == 10
    assert cfg.ipo.can_apply is False
    assert cfg.telegram.enabled is False
    assert cfg.schedule.cron == "0 9 * * *"
    assert cfg.schedule.run_on_start is False
    assert cfg.state.db_path == "data/state.db"


def test_secrets_are_not_in_repr(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "hunter2")
    clean_env.setenv("IPO_CRN", "CRN-777")
    clean_env.setenv("IPO_PIN", "4321")
    clean_env.setenv("TELEGRAM_BOT_TOKEN", "123:abc")

    cfg = load_config(tmp_path / "missing.yaml")
    text = repr(cfg)
    assert "hunter2" not in text
    assert "CRN-777" not in text
    assert "4321" not in text
    assert "123:abc" not in text


def test_missing_credentials_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    with pytest.raises(Exception, match="MEROSHARE_USERNAME and MEROSHARE_PASSWORD"):
        _ = load_config(tmp_path / "missing.yaml")


@pytest.mark.parametrize("raw", ["0", "-5", "ten"])
def test_invalid_quantity_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch, raw: str) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("IPO_QUANTITY", raw)
    with pytest.raises(Exception, match="IPO_QUANTITY must be a positive number"):
        _ = load_config(tmp_path / "missing.yaml")


def test_can_apply_requires_crn_and_pin(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("IPO_CRN", "CRN-1")
    assert load_config(tmp_path / "missing.yaml").ipo.can_apply is False

    clean_env.setenv("IPO_PIN", "1234")
    assert load_config(tmp_path / "missing.yaml").ipo.can_apply is True


def test_yaml_overrides_env_and_expands_vars(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "env-user")
    clean_env.setenv("MEROSHARE_PASSWORD", "env-pass")
    clean_env.setenv("MY_CHAT", "-100200300")
    cfg_path = _write(
        tmp_path,
        "cfg.yaml",
        """
meroshare:
  base_url: "https://meroshare.cdsc.com.np/#/login"
  dp: "13700"
ipo:
  quantity: 20
  bank: "Nabil Bank"
telegram:
  token: "123:abc"
  chat_id: "${MY_CHAT}"
schedule:
  cron: "30 10 * * 0-5"
  timezone: "Asia/Kathmandu"
""",
    )
    cfg = load_config(cfg_path)
    assert cfg.meroshare.username == "env-user"
    assert cfg.meroshare.base_url == "https://meroshare.cdsc.com.np"
    assert cfg.meroshare.dp == "13700"
    assert cfg.ipo.quantity == 20
    assert cfg.ipo.bank == "Nabil Bank"
    assert cfg.telegram.chat_id == "-100200300"
    assert cfg.telegram.enabled is True
    assert cfg.schedule.cron == "30 10 * * 0-5"
    assert cfg.schedule.timezone == "Asia/Kathmandu"


def test_invalid_cron_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("SCHEDULE_TIME", "every day at nine")
    with pytest.raises(Exception):
        _ = load_config(tmp_path / "missing.yaml")


def test_run_on_start_env_bool(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("RUN_ON_START", "true")
    assert load_config(tmp_path / "missing.yaml").schedule.run_on_start is True


def test_invalid_base_url_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("MEROSHARE_BASE_URL", "meroshare")
    with pytest.raises(Exception):
        _ = load_config(tmp_path / "missing.yaml")


def test_invalid_timezone_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MEROSHARE_USERNAME", "user1")
    clean_env.setenv("MEROSHARE_PASSWORD", "secret")
    clean_env.setenv("SCHEDULE_TIMEZONE", "Mars/Olympus")
    with pytest.raises(Exception, match="schedule.timezone is not a valid IANA zone"):
        _ = load_config(tmp_path / "missing.yaml")

    clean_env.setenv("SCHEDULE_TIMEZONE", " Asia/Kathmandu ")
    assert load_config(tmp_path / "missing.yaml").schedule.timezone == "Asia/Kathmandu"
