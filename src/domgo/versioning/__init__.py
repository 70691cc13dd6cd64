"""Version tracking: cache invalidation on build changes and update checks."""

from .invalidator import (
    APP_VERSION_KEY,
    FORCE_CLEAR_KEY,
    VersionInvalidator,
    reexec_process,
)
from .updates import LAST_UPDATE_CHECK_KEY, UpdateChecker, UpdateCheckResult, compare_versions

__all__ = [
    "APP_VERSION_KEY",
    "FORCE_CLEAR_KEY",
    "LAST_UPDATE_CHECK_KEY",
    "UpdateCheckResult",
    "UpdateChecker",
    "VersionInvalidator",
    "compare_versions",
    "reexec_process",
]
