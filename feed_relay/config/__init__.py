"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    FetchPolicy,
    GlobalConfig,
    HeaderProfile,
    IngestionPolicy,
    MessagingConfig,
    ScheduleConfig,
    ScheduleType,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "FetchPolicy",
    "GlobalConfig",
    "HeaderProfile",
    "IngestionPolicy",
    "MessagingConfig",
    "ScheduleConfig",
    "ScheduleType",
]
