"""
Bound Query Tree
================

Parse tree nodes annotated with their schema bindings.
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional

from sqlglot import exp

from sql_verifier.schema import Column, Table


@dataclass(frozen=True, order=True)
class ColumnId:
    """Identity of a column used for comparisons, independent of aliases."""

    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class BoundColumn:
    """A column reference resolved against a source in scope."""

    id: ColumnId
    # Graph node of the source the reference was resolved through
    source: str
    correlated: bool = False
    definition: Optional[Column] = field(default=None, compare=False)


@dataclass
class Source:
    """A row source in a FROM clause: base table, CTE or derived table."""

    alias: str
    identity: str
    node: exp.Expression
    table: Optional[Table] = None
    derived: Optional["BoundQuery"] = None
    # Set when the table name could not be resolved
    unknown: bool = False
    # Table functions, VALUES lists and recursive CTE self-references:
    # any column name resolves
    opaque: bool = False

    @property
    def is_derived(self) -> bool:
        return self.derived is not None

    def column_names(self) -> list[str]:
        if self.table is not None:
            return self.table.column_names
        if self.derived is not None:
            return [name for name, _ in self.derived.outputs]
        return []

    def resolve(self, name: str) -> Optional[BoundColumn]:
        """Resolve a column name against this source."""
        if self.table is not None:
            column = self.table.column(name)
            if column is None:
                return None
            return BoundColumn(
                id=ColumnId(self.identity, column.name),
                source=self.identity,
                definition=column,
            )
        if self.derived is not None:
            output = self.derived.output(name)
            if output is None:
                return None
            out_name, lineage = output
            if lineage is not None:
                return BoundColumn(
                    id=lineage.id, source=self.identity, definition=lineage.definition
                )
            return BoundColumn(id=ColumnId(self.identity, out_name), source=self.identity)
        if self.opaque:
            return BoundColumn(id=ColumnId(self.identity, name), source=self.identity)
        return None


class Scope:
    """
    Name-resolution scope of one SELECT.

    ``parent`` points at the enclosing query's scope and is only used to
    resolve correlated references.
    """

    def __init__(self, parent: Optional["Scope"] = None) -> None:
        self.parent = parent
        self.sources: dict[str, Source] = {}
        self.ctes: dict[str, "BoundQuery"] = dict(parent.ctes) if parent else {}
        self.using_columns: set[str] = set()
        self.output_aliases: dict[str, exp.Expression] = {}

    def source(self, alias: str) -> Optional[Source]:
        if alias in self.sources:
            return self.sources[alias]
        folded = alias.lower()
        matches = [s for key, s in self.sources.items() if key.lower() == folded]
        return matches[0] if len(matches) == 1 else None

    def cte(self, name: str) -> Optional["BoundQuery"]:
        folded = name.lower()
        for key, query in self.ctes.items():
            if key.lower() == folded:
                return query
        return None

    def output_alias(self, name: str) -> Optional[exp.Expression]:
        folded = name.lower()
        for key, node in self.output_aliases.items():
            if key.lower() == folded:
                return node
        return None


@dataclass
class BoundQuery:
    """
    One bound SELECT and its nested queries.

    ``children`` are owned by this query; each child keeps its own scope
    whose parent is used for correlated name resolution only.
    """

    node: exp.Select
    scope: Scope
    depth: int
    clause: str = "root"
    sources: list[Source] = field(default_factory=list)
    bindings: dict[int, BoundColumn] = field(default_factory=dict)
    # Column nodes that refer to select-list aliases, by node id
    alias_refs: dict[int, exp.Expression] = field(default_factory=dict)
    children: list["BoundQuery"] = field(default_factory=list)
    # (operator, branch) pairs for UNION / INTERSECT / EXCEPT
    set_operations: list[tuple[str, "BoundQuery"]] = field(default_factory=list)
    # ORDER BY / LIMIT attached to a set operation as a whole
    set_modifiers: Optional[exp.Expression] = None
    outputs: list[tuple[str, Optional[BoundColumn]]] = field(default_factory=list)

    def output(self, name: str) -> Optional[tuple[str, Optional[BoundColumn]]]:
        for out_name, lineage in self.outputs:
            if out_name == name:
                return out_name, lineage
        folded = name.lower()
        for out_name, lineage in self.outputs:
            if out_name.lower() == folded:
                return out_name, lineage
        return None

    def walk(self) -> Iterator["BoundQuery"]:
        """Yield this query and every nested query, depth first."""
        stack = [self]
        while stack:
            query = stack.pop()
            yield query
            nested = list(query.children) + [branch for _, branch in query.set_operations]
            stack.extend(reversed(nested))

    def all_bindings(self) -> dict[int, BoundColumn]:
        bindings: dict[int, BoundColumn] = {}
        for query in self.walk():
            bindings.update(query.bindings)
        return bindings

    def all_alias_refs(self) -> dict[int, exp.Expression]:
        refs: dict[int, exp.Expression] = {}
        for query in self.walk():
            refs.update(query.alias_refs)
        return refs

    def source_by_identity(self, identity: str) -> Optional[Source]:
        for source in self.sources:
            if source.identity == identity:
                return source
        return None
