"""Per-run scope tracking: override regions, migration direction and transaction mode."""
import contextlib
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterator, Set

from zdguard.errors import ScopeCorruptionError
from zdguard.operations import Category

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeState:
    """Snapshot of a ScopeTracker handed to rules."""

    override_active: bool = False
    override_depth: int = 0
    is_rollback: bool = False
    ddl_transaction_disabled: bool = False
    global_override: bool = False
    schema_load: bool = False
    categories: FrozenSet[Category] = frozenset()

    @property
    def exempt(self) -> bool:
        return (
            self.global_override
            or (self.override_active and self.override_depth > 0)
            or self.is_rollback
            or self.schema_load
        )


class ScopeTracker:
    """Mutable scope for one migration run. Never share one between runs.

    ``global_override`` and ``schema_load`` are fixed at construction. The
    rollback and DDL-transaction flags may each be set once, before the first
    operation is recorded. Override regions nest and must be exited in LIFO
    order; ``safety_assured()`` does that for you.
    """

    def __init__(self, *, global_override: bool = False, schema_load: bool = False) -> None:
        self._global_override = bool(global_override)
        self._schema_load = bool(schema_load)
        self._depth = 0
        self._rollback = False
        self._ddl_transaction_disabled = False
        self._flags_set: Set[str] = set()
        self._categories: Set[Category] = set()
        self._started = False

    @property
    def override_depth(self) -> int:
        return self._depth

    @property
    def override_active(self) -> bool:
        return self._depth > 0

    @property
    def started(self) -> bool:
        return self._started

    def enter_override(self) -> None:
        self._depth += 1
        log.debug("entered override region (depth %d)", self._depth)

    def exit_override(self) -> None:
        if self._depth == 0:
            raise ScopeCorruptionError("exit_override() called without a matching enter_override()")
        self._depth -= 1
        log.debug("exited override region (depth %d)", self._depth)

    @contextlib.contextmanager
    def safety_assured(self) -> Iterator[None]:
        """Mark the enclosed operations as manually verified safe."""
        self.enter_override()
        try:
            yield
        finally:
            self.exit_override()

    def _set_once(self, flag: str) -> None:
        if self._started:
            raise ScopeCorruptionError(f"{flag} cannot change after the migration has started")
        if flag in self._flags_set:
            raise ScopeCorruptionError(f"{flag} was already set for this run")
        self._flags_set.add(flag)

    def set_rollback(self, value: bool) -> None:
        self._set_once("rollback")
        self._rollback = bool(value)

    def set_ddl_transaction_disabled(self, value: bool) -> None:
        self._set_once("ddl_transaction_disabled")
        self._ddl_transaction_disabled = bool(value)

    def is_exempt(self) -> bool:
        return self.state.exempt

    def mark_started(self) -> None:
        """Freeze the rollback and DDL-transaction flags; called on every dispatch."""
        self._started = True

    def record(self, category: Category) -> None:
        """Note that a checked operation of ``category`` is running in this unit."""
        self._started = True
        self._categories.add(Category(category))

    @property
    def state(self) -> ScopeState:
        return ScopeState(
            override_active=self.override_active,
            override_depth=self._depth,
            is_rollback=self._rollback,
            ddl_transaction_disabled=self._ddl_transaction_disabled,
            global_override=self._global_override,
            schema_load=self._schema_load,
            categories=frozenset(self._categories),
        )
