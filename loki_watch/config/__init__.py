"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    Direction,
    GlobalConfig,
    LokiConnection,
    QueryConfig,
    ScheduleConfig,
    ScheduleType,
    TriggerConfig,
    format_duration,
    parse_duration,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "Direction",
    "GlobalConfig",
    "LokiConnection",
    "QueryConfig",
    "ScheduleConfig",
    "ScheduleType",
    "TriggerConfig",
    "format_duration",
    "parse_duration",
]
