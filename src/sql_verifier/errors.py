"""
Errors
======

Failure kinds raised while parsing and binding a query.

Every error that ends an evaluation derives from ``VerificationError`` and
carries a ``FailureKind`` so callers can tell a syntax problem from a
schema problem, or retry ``TOO_COMPLEX`` queries with relaxed limits.
"""

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Kinds of fatal evaluation failures."""

    SYNTAX_ERROR = "syntax_error"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    AMBIGUOUS_REFERENCE = "ambiguous_reference"
    TOO_COMPLEX = "too_complex"


class SchemaError(ValueError):
    """Raised when a schema definition violates the schema invariants."""


class VerificationError(Exception):
    """Base class for errors that terminate an evaluation."""

    kind: FailureKind

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def suggestion(self) -> str:
        """Short hint on how to fix the query."""
        return "Fix the query so that it can be analysed."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class SQLSyntaxError(VerificationError):
    """The query text could not be parsed."""

    kind = FailureKind.SYNTAX_ERROR

    def __init__(
        self,
        description: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        token: Optional[str] = None,
    ) -> None:
        self.description = description
        self.line = line
        self.column = column
        self.token = token

        message = f"SQL syntax error: {description}"
        if token:
            message += f" near '{token}'"
        if line is not None:
            message += f" (line {line}, column {column})"

        super().__init__(
            message,
            details={"line": line, "column": column, "token": token},
        )

    @property
    def suggestion(self) -> str:
        if self.token:
            return f"Correct the SQL syntax around '{self.token}'."
        return "Correct the SQL syntax so the statement parses as a single SELECT query."


class UnresolvedReferenceError(VerificationError):
    """One or more identifiers do not exist in the schema."""

    kind = FailureKind.UNRESOLVED_REFERENCE

    def __init__(self, names: list[str], details: Optional[dict[str, Any]] = None) -> None:
        self.names = list(names)
        super().__init__(
            f"Unresolved reference(s): {', '.join(self.names)}",
            details={"unresolved": self.names, **(details or {})},
        )

    @property
    def suggestion(self) -> str:
        return "Use only tables and columns that exist in the schema: " + ", ".join(self.names)


class AmbiguousReferenceError(VerificationError):
    """An unqualified column matches columns of several sources."""

    kind = FailureKind.AMBIGUOUS_REFERENCE

    def __init__(self, candidates: dict[str, list[str]]) -> None:
        self.candidates = {name: list(sources) for name, sources in candidates.items()}
        parts = [
            f"{name} (could be {' or '.join(sources)})"
            for name, sources in self.candidates.items()
        ]
        super().__init__(
            f"Ambiguous reference(s): {'; '.join(parts)}",
            details={"ambiguous": self.candidates},
        )

    @property
    def suggestion(self) -> str:
        return "Qualify ambiguous columns with their table alias."


class TooComplexError(VerificationError):
    """A size or nesting ceiling was exceeded."""

    kind = FailureKind.TOO_COMPLEX

    def __init__(self, limit_name: str, limit: int, observed: Optional[int] = None) -> None:
        self.limit_name = limit_name
        self.limit = limit
        self.observed = observed
        message = f"Query too complex: {limit_name} exceeds the limit of {limit}"
        if observed is not None:
            message += f" (found {observed})"
        super().__init__(
            message,
            details={"limit_name": limit_name, "limit": limit, "observed": observed},
        )

    @property
    def suggestion(self) -> str:
        return "Simplify the query or raise the verifier's complexity limits."
