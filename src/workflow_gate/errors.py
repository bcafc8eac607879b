"""Error taxonomy for the gate.

Only configuration defects are raised: malformed rule text, inconsistent
workflow definitions, and predicates that cannot be evaluated. Rejected
transitions and invariant violations are ordinary outcomes and are returned
as values by the validator, checker and gate.
"""

from __future__ import annotations

from collections.abc import Sequence


class WorkflowGateError(Exception):
    """Base class for every error raised by this package."""


class ParseError(WorkflowGateError, ValueError):
    """Rule text does not match the grammar.

    ``offset`` is the 0-based character offset into the source; ``line`` and
    ``column`` are 1-based. ``rule`` names the grammar rule that was not met.
    """

    def __init__(self, message: str, *, rule: str, offset: int, line: int, column: int) -> None:
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.offset = offset
        self.line = line
        self.column = column

    def __str__(self) -> str:
        return (
            f"line {self.line}, column {self.column} (offset {self.offset}): "
            f"{self.rule}: {self.message}"
        )


class LoadError(WorkflowGateError, ValueError):
    """A parsed workflow is inconsistent (duplicate or undefined names)."""

    def __init__(self, message: str, problems: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.problems = list(problems)

    def __str__(self) -> str:
        if not self.problems:
            return self.message
        lines = "\n".join(f"  - {p}" for p in self.problems)
        return f"{self.message}\n{lines}"


class UnknownWorkflowError(WorkflowGateError, LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"No workflow named {self.name!r} is loaded"


class EvaluationError(WorkflowGateError, RuntimeError):
    """A formula could not be evaluated (undefined predicate, bad argument).

    This is a defect in the rule text, never a false result.
    """

    def __init__(self, message: str, *, predicate: str | None = None, formula: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.predicate = predicate
        self.formula = formula

    def __str__(self) -> str:
        if self.formula:
            return f"{self.message} (in `{self.formula}`)"
        return self.message


class IllegalDecisionTransition(WorkflowGateError, ValueError):
    pass


class UnknownDecisionError(WorkflowGateError, LookupError):
    def __init__(self, decision_id: str) -> None:
        super().__init__(decision_id)
        self.decision_id = decision_id

    def __str__(self) -> str:
        return f"Unknown decision: {self.decision_id}"
