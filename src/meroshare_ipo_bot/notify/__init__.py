from .telegram import TelegramApiError, TelegramBotApi, TelegramNotifier

__all__ = ["TelegramApiError", "TelegramBotApi", "TelegramNotifier"]
