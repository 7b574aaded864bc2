"""Core domain models, settings, logging configuration, and shared utilities."""

from kgrelay.core.exceptions import (
    ConfigError,
    CredentialNotFoundError,
    InvalidInputError,
    JobNotFoundError,
    KgRelayError,
    SchedulerError,
    StoreError,
    UpstreamError,
    UserNotLoggedInError,
    WorkflowStepError,
)
from kgrelay.core.logging_config import JsonFormatter, configure_logging
from kgrelay.core.models import CredentialRecord, JobState, ModuleResponse, RouteEntry
from kgrelay.core.settings import DEFAULT_CRON, Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "CredentialRecord",
    "JobState",
    "ModuleResponse",
    "RouteEntry",
    # Settings
    "Settings",
    "DEFAULT_CRON",
    # Exceptions
    "KgRelayError",
    "ConfigError",
    "InvalidInputError",
    "StoreError",
    "CredentialNotFoundError",
    "SchedulerError",
    "UserNotLoggedInError",
    "JobNotFoundError",
    "UpstreamError",
    "WorkflowStepError",
]
