from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests


logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000

# Characters with meaning in Telegram's legacy "Markdown" parse mode.
_MARKDOWN_SPECIAL_RE = re.compile(r"([_*`\[])")
_MARKDOWN_ESCAPED_RE = re.compile(r"\\([_*`\[])")


class TelegramApiError(RuntimeError):
    pass


def escape_markdown(text: str) -> str:
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text or "")


def unescape_markdown(text: str) -> str:
    return _MARKDOWN_ESCAPED_RE.sub(r"\1", text or "")


def _now_text() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def format_issue_available(issue_name: str = "") -> str:
    msg = "🚀 *IPO Open 🤩*"
    name = (issue_name or "").strip()
    if name:
        msg += f"\n\n{escape_markdown(name)}"
    return msg


def format_no_issue() -> str:
    return "ℹ️ *No IPO Today 🤦‍♀️*"


def format_application_status(status: str, details: str = "", *, now: Optional[str] = None) -> str:
    emoji = "✅" if status == "success" else "❌" if status == "failed" else "⚠️"
    return (
        f"{emoji} *IPO Application {status.upper()}*\n\n"
        f"{escape_markdown(details)}\n"
        f"Time: {now or _now_text()}"
    )


def format_error(error: str, *, now: Optional[str] = None) -> str:
    return f"❌ *Error Occurred*\n\nError: {escape_markdown(error)}\nTime: {now or _now_text()}"


@dataclass
class TelegramBotApi:
    token: str
    timeout_sec: int = 15
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def __post_init__(self) -> None:
        self.base_url = f"https://api.telegram.org/bot{self.token}"

    def __repr__(self) -> str:
        return f"TelegramBotApi(timeout_sec={self.timeout_sec})"

    def _call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        resp = self.session.post(url, json=payload or {}, timeout=self.timeout_sec)
        try:
            data = resp.json()
        except ValueError:
            data = {"ok": False, "description": (resp.text or "")[:200]}
        if not resp.ok or not bool(data.get("ok")):
            # Never include the URL: it carries the bot token.
            raise TelegramApiError(f"{method} failed: HTTP {resp.status_code} {data.get('description', '')}".strip())
        return data

    def get_me(self) -> Dict[str, Any]:
        return self._call("getMe").get("result") or {}

    def send_message(
        self,
        *,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = "Markdown",
        disable_web_page_preview: bool = True,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": bool(disable_web_page_preview),
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload).get("result") or {}


class TelegramNotifier:
    """
    Outcome notifications for the bot.

    Notifications are non-blocking: when Telegram is not configured every call is a no-op, and send failures
    are logged and reported as False rather than raised.
    """

    def __init__(
        self,
        token: str = "",
        chat_id: str = "",
        *,
        api_factory: Callable[[str], TelegramBotApi] = TelegramBotApi,
    ) -> None:
        self.chat_id = str(chat_id or "").strip()
        token = (token or "").strip()
        self._api: Optional[TelegramBotApi] = api_factory(token) if token and self.chat_id else None

    @property
    def enabled(self) -> bool:
        return self._api is not None

    def check(self) -> Dict[str, Any]:
        """
        Validate the bot token (raises on failure). Used by `preflight`.
        """
        if self._api is None:
            raise TelegramApiError("Telegram is not configured (set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)")
        return self._api.get_me()

    def send_message(self, text: str, *, parse_mode: Optional[str] = "Markdown") -> bool:
        if self._api is None:
            logger.debug("Telegram disabled; not sending message.")
            return False

        msg = (text or "").strip()
        if not msg:
            return False
        if len(msg) > MAX_MESSAGE_CHARS:
            msg = msg[:MAX_MESSAGE_CHARS] + "\n...(truncated)"

        try:
            self._api.send_message(chat_id=self.chat_id, text=msg, parse_mode=parse_mode)
            return True
        except TelegramApiError as e:
            if parse_mode and "parse" in str(e).lower():
                # A message Telegram cannot parse as Markdown is still worth delivering as plain text.
                logger.warning("Telegram rejected Markdown; resending as plain text. (%s)", e)
                return self.send_message(unescape_markdown(text), parse_mode=None)
            logger.warning("Telegram send failed: %s", e)
        except requests.RequestException as e:
            logger.warning("Telegram send failed: %s", e.__class__.__name__)
        return False

    def notify_issue_available(self, issue_name: str = "") -> bool:
        return self.send_message(format_issue_available(issue_name))

    def notify_no_issue(self) -> bool:
        return self.send_message(format_no_issue())

    def notify_application_status(self, status: str, details: str = "") -> bool:
        return self.send_message(format_application_status(status, details))

    def notify_error(self, error: str) -> bool:
        return self.send_message(format_error(error))
