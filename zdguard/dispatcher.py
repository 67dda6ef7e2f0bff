"""Interception dispatcher - gate every migration operation before it runs."""
import logging
from typing import List, Optional, Tuple

from zdguard.errors import UnsafeMigrationError
from zdguard.operations import Operation
from zdguard.rules import EXEMPT, RULES, Rule, Verdict, evaluate
from zdguard.scope import ScopeTracker

log = logging.getLogger(__name__)


class Dispatcher:
    """Checks each operation against the rules before the host performs it.

    The host calls ``check(op)`` and only performs ``op`` if it returns. With
    ``fail_fast`` (the default) a blocked operation raises
    ``UnsafeMigrationError``; otherwise the verdict is appended to
    ``violations`` and returned, which is only sensible on a dry run.
    """

    def __init__(self, scope: ScopeTracker, rules: Optional[List[Rule]] = None,
                 fail_fast: bool = True) -> None:
        self.scope = scope
        self.rules = RULES if rules is None else rules
        self.fail_fast = fail_fast
        self.violations: List[Tuple[Operation, Verdict]] = []

    def evaluate(self, op: Operation) -> Verdict:
        """Decide on ``op`` without raising."""
        self.scope.mark_started()
        if self.scope.is_exempt():
            log.debug("exempt: %s", op.describe())
            return EXEMPT
        self.scope.record(op.category)
        verdict = evaluate(op, self.scope.state, self.rules)
        log.debug("%s: %s%s", verdict.outcome.value, op.describe(),
                  f" [{verdict.rule_id}]" if verdict.blocked else "")
        return verdict

    def check(self, op: Operation) -> Verdict:
        verdict = self.evaluate(op)
        if verdict.blocked:
            if self.fail_fast:
                raise UnsafeMigrationError(verdict, op)
            self.violations.append((op, verdict))
        return verdict
