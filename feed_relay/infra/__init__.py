"""Infra layer utilities (storage, messaging, header profiles)."""

from .header_profiles import HeaderProfilePool
from .storage import SQLiteManager
from .telegram import TelegramMessenger

__all__ = ["HeaderProfilePool", "SQLiteManager", "TelegramMessenger"]
