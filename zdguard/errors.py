"""Exception hierarchy for zdguard."""


class ZdguardError(Exception):
    """Base exception for all zdguard errors."""


class UnsafeMigrationError(ZdguardError):
    """A rule blocked an operation. ``str(err)`` is the full diagnostic."""

    def __init__(self, verdict, operation):
        super().__init__(verdict.message)
        self.verdict = verdict
        self.operation = operation
        self.rule_id = verdict.rule_id


class ScopeCorruptionError(ZdguardError):
    """The host broke the scope contract (unbalanced override, late flag change)."""


class MigrationLoadError(ZdguardError):
    """A migration file could not be imported."""
