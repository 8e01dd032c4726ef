from __future__ import annotations

import argparse
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfoNotFoundError

from croniter import croniter
from dotenv import load_dotenv

from .config import AppConfig, load_config
from .logging_config import configure_logging
from .notify.telegram import TelegramNotifier
from .portal.client import MeroShareClient, PortalCredentials
from .scheduler import CheckScheduler, default_check_command, next_fire_time, resolve_timezone
from .state import StateStore
from .util.debug_bundle import create_debug_bundle
from .workflow import run_check


logger = logging.getLogger("meroshare_ipo_bot")

DEBUG_DIR = "data/debug"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="meroshare_ipo_bot")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Log into MeroShare once, check My ASBA for an open issue, and apply")
    run.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    run.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    run.add_argument(
        "--check-only",
        action="store_true",
        help="Only report whether an issue is open; never fill or submit the application form.",
    )
    run.add_argument(
        "--quantity",
        type=int,
        default=None,
        help="Units (kitta) to apply for; overrides IPO_QUANTITY for this run.",
    )
    run.add_argument("--slowmo-ms", type=int, default=0, help="Playwright slow motion in milliseconds (debug).")
    run.add_argument("--log-steps", action="store_true", help="Log each automation step (no screenshots).")
    run.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under data/debug/.")
    run.add_argument(
        "--step-delay-ms",
        type=int,
        default=0,
        help="Extra delay (ms) after each captured step screenshot (so you can watch the browser).",
    )

    schedule = sub.add_parser("schedule", help="Run the check on a cron schedule (default: 9:00 AM daily)")
    schedule.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    schedule.add_argument("--cron", default="", help="Cron expression; overrides SCHEDULE_TIME (e.g. '0 9 * * *').")
    schedule.add_argument("--timezone", default="", help="IANA timezone for the schedule (e.g. Asia/Kathmandu).")
    schedule.add_argument("--run-on-start", action="store_true", help="Also run once immediately (RUN_ON_START).")
    schedule.add_argument("--check-only", action="store_true", help="Scheduled runs only report; never apply.")
    schedule.add_argument(
        "--timeout-seconds",
        type=int,
        default=900,
        help="Kill a scheduled check that runs longer than this (default: 900).",
    )

    preflight = sub.add_parser(
        "preflight",
        help="Validate configuration and the Telegram bot token. Does not run Playwright.",
    )
    preflight.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    preflight.add_argument("--skip-telegram", action="store_true", help="Skip the Telegram getMe check")
    preflight.add_argument("--send-test", action="store_true", help="Also send a test message to the chat")

    history = sub.add_parser("history", help="Show recently submitted applications from the local state DB")
    history.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    history.add_argument("--limit", type=int, default=20, help="Number of entries to show (default: 20)")
    return p


def _load(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)
    return cfg


def _notifier(cfg: AppConfig) -> TelegramNotifier:
    notifier = TelegramNotifier(cfg.telegram.token, cfg.telegram.chat_id)
    if not notifier.enabled:
        logger.info("Telegram not configured (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID); notifications disabled.")
    return notifier


def _cmd_run(args: argparse.Namespace) -> int:
    if args.quantity is not None and args.quantity < 1:
        raise SystemExit("--quantity must be a positive number")

    cfg = _load(args)
    logger.info(
        "Starting check (apply=%s dp=%r quantity=%s)",
        cfg.ipo.can_apply and not args.check_only,
        cfg.meroshare.dp,
        args.quantity or cfg.ipo.quantity,
    )

    t0 = time.time()
    try:
        client = MeroShareClient(
            base_url=cfg.meroshare.base_url,
            creds=PortalCredentials(
                username=cfg.meroshare.username,
                password=cfg.meroshare.password,
                dp=cfg.meroshare.dp,
            ),
            debug_dir=DEBUG_DIR,
            step_debug=args.step_debug,
            log_steps=args.log_steps,
            step_delay_ms=args.step_delay_ms,
        )
        state = StateStore(cfg.state.db_path)
        run_id = state.record_run_start()
        try:
            result = run_check(
                cfg,
                client=client,
                notifier=_notifier(cfg),
                state=state,
                apply=not args.check_only,
                quantity=args.quantity,
                headless=not args.headful,
                slow_mo_ms=args.slowmo_ms,
            )
            message = result.status.message if result.status else (result.issue.name if result.issue else None)
            state.record_run_finish(run_id, ok=True, outcome=result.outcome, message=message)
            logger.info(
                "Run finished (run_id=%s outcome=%s seconds=%.2f)", run_id, result.outcome, time.time() - t0
            )
            return 0
        except Exception as e:
            state.record_run_finish(run_id, ok=False, message=str(e))
            logger.error("Run failed (run_id=%s seconds=%.2f)", run_id, time.time() - t0)
            raise
        finally:
            state.close()
    except Exception:
        try:
            bundle = create_debug_bundle(
                debug_dir=DEBUG_DIR,
                log_file=cfg.logging.file_path or "data/bot.log",
                out_dir="data",
                label="meroshare",
            )
            logger.error("Wrote debug bundle: %s", bundle)
        except Exception:
            logger.debug("Failed to create debug bundle.", exc_info=True)
        raise


def _cmd_schedule(args: argparse.Namespace) -> int:
    cfg = _load(args)
    cron = (args.cron or cfg.schedule.cron).strip()
    if not croniter.is_valid(cron):
        raise SystemExit(f"Invalid cron expression: {cron!r} (example: '0 9 * * *')")
    try:
        tz = resolve_timezone(args.timezone or cfg.schedule.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise SystemExit(f"Invalid timezone: {args.timezone!r} (example: Asia/Kathmandu)") from None

    command = default_check_command(env_file=args.env_file, config_path=args.config)
    if args.check_only:
        command.append("--check-only")

    scheduler = CheckScheduler(
        cron=cron,
        command=command,
        notifier=_notifier(cfg),
        tz=tz,
        timeout_seconds=args.timeout_seconds,
    )
    logger.info("To change schedule, set SCHEDULE_TIME in .env (cron format), e.g. SCHEDULE_TIME=\"0 9 * * *\"")
    try:
        scheduler.run_forever(run_on_start=bool(args.run_on_start or cfg.schedule.run_on_start))
    except KeyboardInterrupt:
        logger.info("Scheduler stopped.")
    return 0


def _cmd_preflight(args: argparse.Namespace) -> int:
    cfg = _load(args)
    logger.info("Starting preflight checks")
    logger.info(
        "Config OK (base_url=%s dp=%r quantity=%s auto_apply=%s bank=%r)",
        cfg.meroshare.base_url,
        cfg.meroshare.dp,
        cfg.ipo.quantity,
        cfg.ipo.can_apply,
        cfg.ipo.bank,
    )
    if not cfg.ipo.can_apply:
        logger.warning("IPO_CRN and/or IPO_PIN not set: the bot will report open issues but not apply.")

    tz = resolve_timezone(cfg.schedule.timezone)
    now = datetime.now(tz) if tz else datetime.now()
    logger.info("Schedule %r next fires at %s", cfg.schedule.cron, next_fire_time(cfg.schedule.cron, after=now))

    notifier = TelegramNotifier(cfg.telegram.token, cfg.telegram.chat_id)
    if not args.skip_telegram and not notifier.enabled:
        logger.warning("Telegram not configured; skipping Telegram check (notifications will be disabled).")
    elif not args.skip_telegram:
        me = notifier.check()
        logger.info("Telegram OK (bot=@%s)", me.get("username", "?"))
        if args.send_test and not notifier.send_message("✅ *MeroShare IPO bot preflight OK*"):
            raise SystemExit("Telegram test message could not be sent (check TELEGRAM_CHAT_ID).")

    logger.info("Preflight OK")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    cfg = _load(args)
    with StateStore(cfg.state.db_path) as state:
        records = state.list_applications(limit=args.limit)
    if not records:
        print("No applications recorded yet.")
        return 0
    for r in records:
        print(f"{r.applied_at}  {'OK  ' if r.ok else 'FAIL'}  qty={r.quantity:<5} {r.issue_name}  {r.message or ''}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: reconfigured once the config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.cmd == "run":
        return _cmd_run(args)
    if args.cmd == "schedule":
        return _cmd_schedule(args)
    if args.cmd == "preflight":
        return _cmd_preflight(args)
    if args.cmd == "history":
        return _cmd_history(args)
    raise SystemExit(f"Unknown command: {args.cmd}")
