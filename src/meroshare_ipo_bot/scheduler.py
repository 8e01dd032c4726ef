from __future__ import annotations

import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from croniter import croniter

from .notify.telegram import TelegramNotifier


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobResult:
    ok: bool
    returncode: Optional[int]
    output: str = ""
    error: str = ""


def resolve_timezone(name: str) -> Optional[tzinfo]:
    name = (name or "").strip()
    return ZoneInfo(name) if name else None


def next_fire_time(cron: str, *, after: datetime) -> datetime:
    return croniter(cron, after).get_next(datetime)


def _tail(text: str, *, lines: int = 20) -> str:
    return "\n".join((text or "").strip().splitlines()[-lines:])


def run_check_subprocess(cmd: Sequence[str], *, timeout_seconds: int) -> JobResult:
    """
    Run one check in a child process so a wedged browser can never take the scheduler down with it.
    """
    try:
        proc = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        output = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        return JobResult(ok=False, returncode=None, output=output, error=f"timed out after {timeout_seconds}s")

    if proc.returncode == 0:
        return JobResult(ok=True, returncode=0, output=proc.stdout or "")

    last = _tail(proc.stderr or proc.stdout or "", lines=1)
    error = f"exit code {proc.returncode}" + (f": {last}" if last else "")
    return JobResult(ok=False, returncode=proc.returncode, output=(proc.stdout or "") + (proc.stderr or ""), error=error)


def default_check_command(*, env_file: str, config_path: str) -> list[str]:
    return [sys.executable, "-m", "meroshare_ipo_bot", "--env-file", env_file, "run", "--config", config_path]


class CheckScheduler:
    """
    Cron-driven loop: each fire time runs one check and reports failures to Telegram.
    """

    def __init__(
        self,
        *,
        cron: str,
        command: Sequence[str],
        notifier: TelegramNotifier,
        tz: Optional[tzinfo] = None,
        timeout_seconds: int = 900,
        runner: Callable[..., JobResult] = run_check_subprocess,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron!r}")
        self.cron = cron
        self.command = list(command)
        self.notifier = notifier
        self.tz = tz
        self.timeout_seconds = int(timeout_seconds)
        self._runner = runner
        self._clock = clock or (lambda: datetime.now(self.tz) if self.tz else datetime.now())
        self._sleep = sleep

    def run_job(self, *, label: str) -> JobResult:
        logger.info("Running %s automation...", label.lower())
        result = self._runner(self.command, timeout_seconds=self.timeout_seconds)
        if result.output.strip():
            logger.info("Check output:\n%s", _tail(result.output, lines=40))
        if result.ok:
            logger.info("%s automation completed.", label)
        else:
            logger.error("%s automation failed: %s", label, result.error)
            what = "Initial automation run" if label == "Initial" else f"{label} automation"
            self.notifier.notify_error(f"{what} failed: {result.error}")
        return result

    def run_forever(self, *, run_on_start: bool = False, max_runs: Optional[int] = None) -> None:
        logger.info("Scheduler started. Will run on schedule: %s%s", self.cron, f" ({self.tz})" if self.tz else "")
        if run_on_start:
            self.run_job(label="Initial")

        runs = 0
        while max_runs is None or runs < max_runs:
            now = self._clock()
            fire_at = next_fire_time(self.cron, after=now)
            logger.info("Next run at %s", fire_at.isoformat(timespec="minutes"))
            self._sleep_until(fire_at)
            self.run_job(label="Scheduled")
            runs += 1

    def _sleep_until(self, fire_at: datetime) -> None:
        # Sleep in short chunks so clock jumps (suspend/resume, NTP) are noticed.
        while True:
            remaining = (fire_at - self._clock()).total_seconds()
            if remaining <= 0:
                return
            self._sleep(min(remaining, 60.0))
