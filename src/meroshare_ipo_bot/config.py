from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import croniter
from pydantic import BaseModel, Field, model_validator


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_BASE_URL = "https://meroshare.cdsc.com.np"
DEFAULT_SCHEDULE = "0 9 * * *"


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so most users only need `.env`.

    `config.yaml` remains an optional override (and may reference env vars as `${NAME}`).
    """
    return {
        "meroshare": {
            "base_url": os.getenv("MEROSHARE_BASE_URL", DEFAULT_BASE_URL),
            "username": os.getenv("MEROSHARE_USERNAME", ""),
            "password": os.getenv("MEROSHARE_PASSWORD", ""),
            "dp": os.getenv("MEROSHARE_DP_NP", ""),
        },
        "ipo": {
            "quantity": os.getenv("IPO_QUANTITY", "10"),
            "crn": os.getenv("IPO_CRN", ""),
            "pin": os.getenv("IPO_PIN", ""),
            "bank": os.getenv("IPO_BANK", ""),
            "account_number": os.getenv("IPO_ACCOUNT_NUMBER", ""),
        },
        "telegram": {
            "token": os.getenv("TELEGRAM_BOT_TOKEN", ""),
            "chat_id": os.getenv("TELEGRAM_CHAT_ID", ""),
        },
        "schedule": {
            "cron": os.getenv("SCHEDULE_TIME", DEFAULT_SCHEDULE),
            "timezone": os.getenv("SCHEDULE_TIMEZONE", ""),
            "run_on_start": _env_bool("RUN_ON_START", default=False),
        },
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/state.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/bot.log"),
        },
    }


class MeroShareConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    username: str = ""
    password: str = Field(default="", repr=False)
    # Depository Participant as shown in the login dropdown, or its numeric code.
    dp: str = ""

    @model_validator(mode="after")
    def _validate(self) -> "MeroShareConfig":
        if not (self.username or "").strip() or not (self.password or "").strip():
            raise ValueError("MEROSHARE_USERNAME and MEROSHARE_PASSWORD must be set in .env file")

        base_url = (self.base_url or "").strip() or DEFAULT_BASE_URL
        base_url = base_url.rstrip("/")
        # Accept a pasted SPA route like https://meroshare.cdsc.com.np/#/login
        if "#" in base_url:
            base_url = base_url.split("#", 1)[0].rstrip("/")
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"meroshare.base_url must be a full URL like '{DEFAULT_BASE_URL}'")

        self.base_url = base_url
        self.username = self.username.strip()
        self.dp = (self.dp or "").strip()
        return self


class IpoConfig(BaseModel):
    quantity: int = 10
    crn: str = Field(default="", repr=False)
    pin: str = Field(default="", repr=False)
    bank: str = ""
    account_number: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce_quantity(cls, data: object) -> object:
        if not isinstance(data, dict) or "quantity" not in data:
            return data
        raw = data.get("quantity")
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return {**data, "quantity": 10}
        try:
            qty = int(str(raw).strip())
        except ValueError:
            raise ValueError("IPO_QUANTITY must be a positive number") from None
        if qty < 1:
            raise ValueError("IPO_QUANTITY must be a positive number")
        return {**data, "quantity": qty}

    @property
    def can_apply(self) -> bool:
        # Applying needs both the CRN and the transaction PIN; otherwise we only report.
        return bool((self.crn or "").strip() and (self.pin or "").strip())


class TelegramConfig(BaseModel):
    token: str = Field(default="", repr=False)
    chat_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool((self.token or "").strip() and str(self.chat_id or "").strip())


class ScheduleConfig(BaseModel):
    cron: str = DEFAULT_SCHEDULE
    timezone: str = ""
    run_on_start: bool = False

    @model_validator(mode="after")
    def _validate_schedule(self) -> "ScheduleConfig":
        expr = (self.cron or "").strip() or DEFAULT_SCHEDULE
        if not croniter.is_valid(expr):
            raise ValueError(f"schedule.cron is not a valid cron expression: {expr!r} (example: '0 9 * * *')")
        self.cron = expr

        tz = (self.timezone or "").strip()
        if tz:
            try:
                ZoneInfo(tz)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(
                    f"schedule.timezone is not a valid IANA zone: {tz!r} (example: 'Asia/Kathmandu')"
                ) from None
        self.timezone = tz
        return self


class StateConfig(BaseModel):
    db_path: str = "data/state.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/bot.log"


class AppConfig(BaseModel):
    meroshare: MeroShareConfig
    ipo: IpoConfig = IpoConfig()
    telegram: TelegramConfig = TelegramConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
