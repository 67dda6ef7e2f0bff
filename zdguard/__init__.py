"""zdguard: block migration operations that would lock tables or break a rolling deploy."""
from zdguard.config import GuardConfig
from zdguard.dispatcher import Dispatcher
from zdguard.errors import (
    MigrationLoadError,
    ScopeCorruptionError,
    UnsafeMigrationError,
    ZdguardError,
)
from zdguard.migration import DryRunBackend, Migration, MigrationRunner
from zdguard.rules import RULES, Outcome, Verdict
from zdguard.scope import ScopeState, ScopeTracker

__version__ = "0.1.0"

__all__ = [
    "RULES",
    "Dispatcher",
    "DryRunBackend",
    "GuardConfig",
    "Migration",
    "MigrationLoadError",
    "MigrationRunner",
    "Outcome",
    "ScopeCorruptionError",
    "ScopeState",
    "ScopeTracker",
    "UnsafeMigrationError",
    "Verdict",
    "ZdguardError",
]
