"""Scheduled MeroShare IPO checker/applier with Telegram notifications."""

__version__ = "0.1.0"
