"""Reference host: migration base class, schema proxy and runner.

Every schema method builds an operation descriptor, hands it to the
dispatcher and only then passes it to the backend, so a blocked operation
never reaches the database.
"""
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, ContextManager, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

from zdguard.config import GuardConfig
from zdguard.dispatcher import Dispatcher
from zdguard.errors import UnsafeMigrationError
from zdguard.operations import (
    NO_DEFAULT,
    AddColumn,
    AddIndex,
    DataMutation,
    Operation,
    RawIteration,
    RemoveColumn,
    RenameColumn,
    SchemaChange,
)
from zdguard.rules import Rule, Verdict
from zdguard.scope import ScopeTracker

log = logging.getLogger(__name__)

UP = "up"
DOWN = "down"


class Migration:
    """Base class for migrations.

    Subclass and implement ``up`` (and ``down`` if the migration can be
    reverted)::

        class AddActiveToUsers(Migration):
            def up(self, schema):
                schema.add_column("users", "active", "boolean")

    ``disable_ddl_transaction`` runs the migration outside a transaction,
    which only concurrent index builds need. ``safety_assured`` skips every
    check for the whole migration.
    """

    disable_ddl_transaction = False
    safety_assured = False

    def up(self, schema: "Schema") -> None:
        pass

    def down(self, schema: "Schema") -> None:
        pass


class Backend(Protocol):
    """What the runner needs from a database connection."""

    def execute(self, op: Operation) -> None: ...

    def fetch(self, table: str, filters: Dict[str, Any],
              batch_size: Optional[int]) -> Iterable[Dict[str, Any]]: ...

    def transaction(self) -> ContextManager[None]: ...


class DryRunBackend:
    """Records operations instead of running them. ``rows`` seeds iteration results."""

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.rows = rows or {}
        self.executed: List[Operation] = []
        self.transactions = 0

    def execute(self, op: Operation) -> None:
        self.executed.append(op)

    def fetch(self, table: str, filters: Dict[str, Any],
              batch_size: Optional[int]) -> Iterable[Dict[str, Any]]:
        return [
            row for row in self.rows.get(table, [])
            if all(_matches(row.get(k), v) for k, v in filters.items())
        ]

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        self.transactions += 1
        yield


def _matches(value: Any, wanted: Any) -> bool:
    if isinstance(wanted, (list, tuple, set, frozenset)):
        return value in wanted
    return value == wanted


def _batches(rows: Iterable[Dict[str, Any]], size: int) -> Iterator[List[Dict[str, Any]]]:
    batch: List[Dict[str, Any]] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def _caller_line() -> Optional[int]:
    """Line number of the first frame outside this module (the migration file)."""
    frame = inspect.currentframe()
    try:
        while frame is not None and frame.f_code.co_filename == __file__:
            frame = frame.f_back
        return frame.f_lineno if frame is not None else None
    finally:
        del frame


@dataclass
class Observation:
    operation: Operation
    verdict: Verdict
    line: Optional[int] = None


@dataclass
class RunReport:
    """What happened during one run of one migration."""

    name: str
    direction: str
    observations: List[Observation] = field(default_factory=list)
    error: Optional[UnsafeMigrationError] = None

    @property
    def violations(self) -> List[Observation]:
        return [o for o in self.observations if o.verdict.blocked]

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        """Re-raise the first blocked operation, if any."""
        if self.error is not None:
            raise self.error
        if self.violations:
            first = self.violations[0]
            raise UnsafeMigrationError(first.verdict, first.operation)


class Relation:
    """Rows of one table, optionally narrowed with ``where``."""

    def __init__(self, schema: "Schema", table: str, filters: Optional[Dict[str, Any]] = None) -> None:
        self._schema = schema
        self.table = table
        self.filters = dict(filters or {})

    @property
    def scoped(self) -> bool:
        return bool(self.filters)

    def where(self, **filters: Any) -> "Relation":
        return Relation(self._schema, self.table, {**self.filters, **filters})

    def update_all(self, **values: Any) -> None:
        self._schema._perform(DataMutation(self.table, "update_all", values, self.scoped))

    def delete_all(self) -> None:
        self._schema._perform(DataMutation(self.table, "delete_all", {}, self.scoped))

    def _fetch(self, method: str, batch_size: Optional[int] = None) -> Iterable[Dict[str, Any]]:
        self._schema._perform(RawIteration(self.table, method, self.scoped, batch_size))
        return self._schema.backend.fetch(self.table, self.filters, batch_size)

    def each(self) -> Iterator[Dict[str, Any]]:
        return iter(list(self._fetch("each")))

    def all(self) -> List[Dict[str, Any]]:
        return list(self._fetch("all"))

    def find_each(self, batch_size: int = 1000) -> Iterator[Dict[str, Any]]:
        return iter(self._fetch("find_each", batch_size))

    def find_in_batches(self, batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        return _batches(self._fetch("find_in_batches", batch_size), batch_size)

    def in_batches(self, batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        return _batches(self._fetch("in_batches", batch_size), batch_size)


class Schema:
    """The object a migration's ``up``/``down`` receives."""

    def __init__(self, dispatcher: Dispatcher, backend: Backend, report: RunReport) -> None:
        self.dispatcher = dispatcher
        self.backend = backend
        self.report = report

    def _perform(self, op: Operation) -> None:
        line = _caller_line()
        try:
            verdict = self.dispatcher.check(op)
        except UnsafeMigrationError as err:
            self.report.observations.append(Observation(op, err.verdict, line))
            raise
        self.report.observations.append(Observation(op, verdict, line))
        if not verdict.blocked:
            self.backend.execute(op)

    def safety_assured(self) -> ContextManager[None]:
        """Skip checks for the operations inside the ``with`` block."""
        return self.dispatcher.scope.safety_assured()

    def table(self, name: str) -> Relation:
        return Relation(self, name)

    def add_column(self, table: str, column: str, type: str, default: Any = NO_DEFAULT,
                   null: Optional[bool] = None) -> None:
        self._perform(AddColumn(table, column, type, default, null))

    def remove_column(self, table: str, column: str, type: Optional[str] = None) -> None:
        self._perform(RemoveColumn(table, column, type))

    def rename_column(self, table: str, old_column: str, new_column: str) -> None:
        self._perform(RenameColumn(table, old_column, new_column))

    def add_index(self, table: str, columns: Sequence[str], name: Optional[str] = None,
                  unique: bool = False, algorithm: Optional[str] = None) -> None:
        self._perform(AddIndex(table, columns, name, unique, algorithm))

    def remove_index(self, table: str, column: Optional[str] = None, name: Optional[str] = None) -> None:
        self._perform(SchemaChange(table, "remove_index", column, name))

    def create_table(self, table: str) -> None:
        self._perform(SchemaChange(table, "create_table"))

    def drop_table(self, table: str) -> None:
        self._perform(SchemaChange(table, "drop_table"))

    def change_column(self, table: str, column: str, type: str) -> None:
        self._perform(SchemaChange(table, "change_column", column, type))

    def change_column_default(self, table: str, column: str, default: Any) -> None:
        self._perform(SchemaChange(table, "change_column_default", column, default))

    def change_column_null(self, table: str, column: str, null: bool) -> None:
        self._perform(SchemaChange(table, "change_column_null", column, null))

    def add_foreign_key(self, table: str, to_table: str, column: Optional[str] = None) -> None:
        self._perform(SchemaChange(table, "add_foreign_key", column, to_table))


class MigrationRunner:
    """Runs migrations one at a time, each with a fresh scope tracker."""

    def __init__(self, config: Optional[GuardConfig] = None, backend: Optional[Backend] = None,
                 rules: Optional[List[Rule]] = None) -> None:
        self.config = config if config is not None else GuardConfig.from_env()
        self.backend = backend if backend is not None else DryRunBackend()
        self.rules = rules

    def run(self, migration: Any, direction: str = UP, name: Optional[str] = None) -> RunReport:
        """Run ``migration`` (a Migration subclass or instance) in ``direction``.

        Stops at the first blocked operation unless the config turns fail_fast
        off; the error is kept on the report rather than raised.
        """
        if direction not in (UP, DOWN):
            raise ValueError(f"direction must be {UP!r} or {DOWN!r}, got {direction!r}")
        mig = migration() if isinstance(migration, type) else migration
        report = RunReport(name or type(mig).__name__, direction)

        scope = ScopeTracker(global_override=self.config.safety_assured,
                             schema_load=self.config.schema_load)
        scope.set_rollback(direction == DOWN)
        scope.set_ddl_transaction_disabled(bool(mig.disable_ddl_transaction))
        dispatcher = Dispatcher(scope, self.rules, fail_fast=self.config.fail_fast)
        schema = Schema(dispatcher, self.backend, report)

        log.debug("running %s %s", report.name, direction)
        try:
            with contextlib.ExitStack() as stack:
                if not mig.disable_ddl_transaction:
                    stack.enter_context(self.backend.transaction())
                if mig.safety_assured:
                    stack.enter_context(scope.safety_assured())
                getattr(mig, direction)(schema)
        except UnsafeMigrationError as err:
            log.debug("%s blocked by %s", report.name, err.rule_id)
            report.error = err
        return report
