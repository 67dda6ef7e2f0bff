"""zdguard rule set - decide whether one observed migration operation is safe to run."""
import enum
from dataclasses import dataclass, replace
from typing import Callable, FrozenSet, List, Optional

from zdguard import diagnostics
from zdguard.operations import (
    AddColumn,
    AddIndex,
    Operation,
    OperationKind,
    RawIteration,
)
from zdguard.scope import ScopeState


class Outcome(str, enum.Enum):
    EXEMPT = "exempt"
    ALLOWED = "allowed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class Verdict:
    outcome: Outcome
    rule_id: str = ""
    message: str = ""

    def __post_init__(self) -> None:
        if self.outcome is Outcome.BLOCKED and not (self.rule_id and self.message.strip()):
            raise ValueError("a blocked verdict needs a rule id and a remediation message")

    @property
    def blocked(self) -> bool:
        return self.outcome is Outcome.BLOCKED

    @property
    def summary(self) -> str:
        """First line of the message: the one-sentence hazard."""
        return self.message.strip().splitlines()[0] if self.message else ""


ALLOWED = Verdict(Outcome.ALLOWED)
EXEMPT = Verdict(Outcome.EXEMPT)


def blocked(rule_id: str, template: str, op: Operation, state: ScopeState) -> Verdict:
    return Verdict(Outcome.BLOCKED, rule_id, diagnostics.render(template, op, state))


@dataclass(frozen=True)
class Rule:
    rule_id: str
    name: str
    summary: str
    kinds: FrozenSet[OperationKind]
    check: Callable[[Operation, ScopeState], Verdict]

    def applies_to(self, op: Operation) -> bool:
        return op.kind in self.kinds


def check_add_column(op: AddColumn, state: ScopeState) -> Verdict:
    # A not-null column is blocked even when a default is supplied.
    if op.null is False:
        return blocked("ZD001", diagnostics.ADD_COLUMN_NOT_NULL, op, state)
    if op.has_default and op.default is not None:
        return blocked("ZD001", diagnostics.ADD_COLUMN_DEFAULT, op, state)
    return ALLOWED


def check_remove_column(op: Operation, state: ScopeState) -> Verdict:
    return blocked("ZD002", diagnostics.REMOVE_COLUMN, op, state)


def check_rename_column(op: Operation, state: ScopeState) -> Verdict:
    return blocked("ZD003", diagnostics.RENAME_COLUMN, op, state)


def check_add_index(op: AddIndex, state: ScopeState) -> Verdict:
    if not op.concurrent:
        return blocked("ZD004", diagnostics.ADD_INDEX_LOCKING, op, state)
    if not state.ddl_transaction_disabled:
        return blocked("ZD004", diagnostics.ADD_INDEX_IN_TRANSACTION, op, state)
    return ALLOWED


def check_mixed_migration(op: Operation, state: ScopeState) -> Verdict:
    seen = state.categories | {op.category}
    if len(seen) > 1:
        return blocked("ZD005", diagnostics.MIXED_MIGRATION, op, replace(state, categories=seen))
    return ALLOWED


def check_ddl_transaction(op: Operation, state: ScopeState) -> Verdict:
    if state.ddl_transaction_disabled:
        return blocked("ZD006", diagnostics.DDL_TRANSACTION, op, state)
    return ALLOWED


def check_unbatched_iteration(op: RawIteration, state: ScopeState) -> Verdict:
    if op.batched or op.scoped:
        return ALLOWED
    return blocked("ZD007", diagnostics.UNBATCHED_ITERATION, op, state)


_ALL_KINDS = frozenset(OperationKind)

# Evaluated in this order; the first blocking rule wins.
RULES: List[Rule] = [
    Rule("ZD005", "mixed_migration",
         "Schema, data and index changes must each get their own migration",
         _ALL_KINDS, check_mixed_migration),
    Rule("ZD006", "ddl_transaction",
         "Only concurrent index builds may disable the DDL transaction",
         _ALL_KINDS - {OperationKind.ADD_INDEX}, check_ddl_transaction),
    Rule("ZD001", "add_column",
         "Adding a column with a default or NOT NULL rewrites the table under lock",
         frozenset({OperationKind.ADD_COLUMN}), check_add_column),
    Rule("ZD002", "remove_column",
         "Removing a column breaks app versions that still read it",
         frozenset({OperationKind.REMOVE_COLUMN}), check_remove_column),
    Rule("ZD003", "rename_column",
         "Renaming a column breaks app versions that use the old name",
         frozenset({OperationKind.RENAME_COLUMN}), check_rename_column),
    Rule("ZD004", "add_index",
         "Indexes must be built concurrently with the DDL transaction disabled",
         frozenset({OperationKind.ADD_INDEX}), check_add_index),
    Rule("ZD007", "unbatched_iteration",
         "Iterating an unscoped table must use batches",
         frozenset({OperationKind.RAW_ITERATION}), check_unbatched_iteration),
]


def rules_for(op: Operation, rules: Optional[List[Rule]] = None) -> List[Rule]:
    """Rules that apply to ``op``, in evaluation order."""
    return [r for r in (RULES if rules is None else rules) if r.applies_to(op)]


def evaluate(op: Operation, state: ScopeState, rules: Optional[List[Rule]] = None) -> Verdict:
    """Run the applicable rules against ``op`` without consulting exemptions."""
    for rule in rules_for(op, rules):
        verdict = rule.check(op, state)
        if verdict.blocked:
            return verdict
    return ALLOWED
