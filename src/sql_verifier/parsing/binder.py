"""
Binder
======

Resolves every table and column reference of a parsed query against the
schema model.

Column references resolve against the nearest enclosing scope first and
fall back outward for correlated subqueries. Expression trees are walked
iteratively; only query nesting recurses, bounded by ``max_depth``.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from sqlglot import exp

from sql_verifier.config import VerifierConfig
from sql_verifier.errors import (
    AmbiguousReferenceError,
    SQLSyntaxError,
    TooComplexError,
    UnresolvedReferenceError,
)
from sql_verifier.parsing.bound import BoundColumn, BoundQuery, Scope, Source
from sql_verifier.parsing.tree import SET_TYPES, children, clause, is_query, set_operator
from sql_verifier.schema import SchemaModel

# Clauses where a bare name is looked up as a select-list alias first
_ALIAS_FIRST = {"order"}
# Clauses that may fall back to a select-list alias
_ALIAS_FALLBACK = {"group", "having", "where", "join"}


@dataclass
class _BindState:
    unresolved: list[str] = field(default_factory=list)
    ambiguous: dict[str, list[str]] = field(default_factory=dict)
    source_count: int = 0
    recursive_ctes: set[str] = field(default_factory=set)

    def add_unresolved(self, name: str) -> None:
        if name not in self.unresolved:
            self.unresolved.append(name)


class Binder:
    """Binds parsed queries to a schema model."""

    def __init__(self, schema: SchemaModel, config: Optional[VerifierConfig] = None) -> None:
        self.schema = schema
        self.config = config or VerifierConfig()

    def bind(self, root: exp.Expression) -> BoundQuery:
        """
        Bind a parsed query.

        Args:
            root: Root expression returned by ``parse_sql``

        Returns:
            The bound tree rooted at the outermost SELECT

        Raises:
            UnresolvedReferenceError: Some identifiers are not in the schema
            AmbiguousReferenceError: Some unqualified columns match several sources
            TooComplexError: Nesting depth or source count limits exceeded
        """
        state = _BindState()
        query = self._bind_query(root, parent=None, depth=1, clause_name="root", state=state)

        if state.unresolved:
            details = {"ambiguous": state.ambiguous} if state.ambiguous else None
            raise UnresolvedReferenceError(state.unresolved, details=details)
        if state.ambiguous:
            raise AmbiguousReferenceError(state.ambiguous)
        return query

    # ------------------------------------------------------------------
    # Queries

    def _bind_query(
        self,
        node: exp.Expression,
        parent: Optional[Scope],
        depth: int,
        clause_name: str,
        state: _BindState,
    ) -> BoundQuery:
        if depth > self.config.max_depth:
            raise TooComplexError("query nesting depth", self.config.max_depth, depth)

        while isinstance(node, exp.Subquery):
            node = node.this

        if isinstance(node, SET_TYPES):
            return self._bind_set_operation(node, parent, depth, clause_name, state)
        if isinstance(node, exp.Select):
            return self._bind_select(node, parent, depth, clause_name, state)
        raise SQLSyntaxError(f"unsupported query form {node.key.upper()}")

    def _bind_set_operation(
        self,
        node: exp.Expression,
        parent: Optional[Scope],
        depth: int,
        clause_name: str,
        state: _BindState,
    ) -> BoundQuery:
        outer = parent
        ctes: list[BoundQuery] = []
        with_ = clause(node, exp.With)
        if with_ is not None:
            outer = Scope(parent)
            ctes = self._bind_ctes(with_, outer, depth, state)

        branches: list[tuple[str, exp.Expression]] = []
        current = node
        while isinstance(current, SET_TYPES):
            branches.append((set_operator(current), current.expression))
            current = current.this
            while isinstance(current, exp.Subquery):
                current = current.this
        branches.reverse()

        if not isinstance(current, exp.Select):
            raise SQLSyntaxError(f"unsupported set operation operand {current.key.upper()}")

        first = self._bind_select(current, outer, depth, clause_name, state)
        first.children[:0] = ctes
        for operator, branch in branches:
            bound = self._bind_query(branch, outer, depth, "set_operation", state)
            first.set_operations.append((operator, bound))

        first.set_modifiers = node
        order = clause(node, exp.Order)
        if order is not None:
            for ordered in order.expressions:
                self._bind_expression(first, ordered, "order", state)
        return first

    def _bind_ctes(
        self, with_: exp.With, scope: Scope, depth: int, state: _BindState
    ) -> list[BoundQuery]:
        bound_ctes = []
        recursive = bool(with_.args.get("recursive"))
        for cte in with_.expressions:
            name = cte.alias
            if recursive:
                state.recursive_ctes.add(name.lower())
            body = self._bind_query(cte.this, scope, depth + 1, "cte", state)
            state.recursive_ctes.discard(name.lower())
            _rename_outputs(body, cte.args.get("alias"))
            scope.ctes[name] = body
            bound_ctes.append(body)
        return bound_ctes

    def _bind_select(
        self,
        select: exp.Select,
        parent: Optional[Scope],
        depth: int,
        clause_name: str,
        state: _BindState,
    ) -> BoundQuery:
        scope = Scope(parent)
        query = BoundQuery(node=select, scope=scope, depth=depth, clause=clause_name)

        with_ = clause(select, exp.With)
        if with_ is not None:
            query.children.extend(self._bind_ctes(with_, scope, depth, state))

        from_ = clause(select, exp.From)
        if from_ is not None:
            self._add_source(query, from_.this, state)
            # Older sqlglot releases keep comma-joined tables on the FROM node
            for extra in from_.args.get("expressions") or []:
                self._add_source(query, extra, state)

        joins = select.args.get("joins") or []
        for join in joins:
            self._add_source(query, join.this, state)
            for using in join.args.get("using") or []:
                scope.using_columns.add(using.name.lower())

        for projection in select.expressions:
            if isinstance(projection, exp.Alias):
                scope.output_aliases[projection.alias] = projection.this

        for projection in select.expressions:
            self._bind_expression(query, projection, "select", state)
        for join in joins:
            on = join.args.get("on")
            if on is not None:
                self._bind_expression(query, on, "join", state)

        for clause_type, name in (
            (exp.Where, "where"),
            (exp.Group, "group"),
            (exp.Having, "having"),
            (exp.Order, "order"),
        ):
            node = clause(select, clause_type)
            if node is not None:
                self._bind_expression(query, node, name, state)

        query.outputs = self._outputs(query)
        return query

    def _outputs(self, query: BoundQuery) -> list[tuple[str, Optional[BoundColumn]]]:
        outputs: list[tuple[str, Optional[BoundColumn]]] = []
        for index, projection in enumerate(query.node.expressions):
            if isinstance(projection, exp.Star):
                for source in query.sources:
                    outputs.extend((name, source.resolve(name)) for name in source.column_names())
            elif isinstance(projection, exp.Column) and isinstance(projection.this, exp.Star):
                source = query.scope.source(projection.table)
                if source is not None:
                    outputs.extend((name, source.resolve(name)) for name in source.column_names())
            elif isinstance(projection, exp.Alias):
                inner = projection.this
                lineage = query.bindings.get(id(inner)) if isinstance(inner, exp.Column) else None
                outputs.append((projection.alias, lineage))
            elif isinstance(projection, exp.Column):
                outputs.append((projection.name, query.bindings.get(id(projection))))
            else:
                outputs.append((f"_col{index}", None))
        return outputs

    # ------------------------------------------------------------------
    # Sources

    def _add_source(self, query: BoundQuery, node: exp.Expression, state: _BindState) -> None:
        state.source_count += 1
        if state.source_count > self.config.max_tables:
            raise TooComplexError("row sources", self.config.max_tables, state.source_count)

        scope = query.scope
        if isinstance(node, exp.Table) and isinstance(node.this, exp.Identifier):
            name = node.name
            alias = node.alias or name
            cte = None if node.args.get("db") else scope.cte(name)
            if cte is not None:
                identity = _derived_identity(query)
                source = Source(alias=alias, identity=identity, node=node, derived=cte)
            elif name.lower() in state.recursive_ctes:
                source = Source(alias=alias, identity=name, node=node, opaque=True)
            else:
                table = self.schema.resolve_table(name)
                if table is None:
                    state.add_unresolved(f"table '{name}'")
                    source = Source(alias=alias, identity=name, node=node, unknown=True)
                else:
                    source = Source(alias=alias, identity=table.name, node=node, table=table)
        elif isinstance(node, exp.Subquery) and is_query(node):
            # Derived tables see the enclosing WITH list but not their sibling sources
            outer = Scope(scope.parent)
            outer.ctes.update(scope.ctes)
            derived = self._bind_query(node.this, outer, query.depth + 1, "from", state)
            _rename_outputs(derived, node.args.get("alias"))
            query.children.append(derived)
            alias = node.alias or f"subquery{len(query.sources) + 1}"
            identity = _derived_identity(query)
            source = Source(alias=alias, identity=identity, node=node, derived=derived)
        else:
            alias = node.alias or node.key
            source = Source(alias=alias, identity=alias, node=node, opaque=True)

        source.identity = _unique_identity(query, source.identity)
        existing = scope.source(source.alias)
        if existing is not None:
            state.ambiguous[source.alias] = [existing.identity, source.identity]
        scope.sources[source.alias] = source
        query.sources.append(source)

    # ------------------------------------------------------------------
    # Expressions

    def _bind_expression(
        self, query: BoundQuery, root: exp.Expression, clause_name: str, state: _BindState
    ) -> None:
        stack = [root]
        while stack:
            node = stack.pop()
            if is_query(node):
                child = self._bind_query(node, query.scope, query.depth + 1, clause_name, state)
                query.children.append(child)
                continue
            if isinstance(node, exp.Column):
                self._bind_column(query, node, clause_name, state)
                continue
            stack.extend(reversed(list(children(node))))

    def _bind_column(
        self, query: BoundQuery, column: exp.Column, clause_name: str, state: _BindState
    ) -> None:
        qualifier = column.table
        if isinstance(column.this, exp.Star):
            if qualifier and _find_source(query.scope, qualifier)[0] is None:
                state.add_unresolved(f"table '{qualifier}'")
            return

        name = column.name
        if qualifier:
            source, correlated = _find_source(query.scope, qualifier)
            if source is None:
                state.add_unresolved(f"column '{qualifier}.{name}'")
                return
            if source.unknown:
                return
            bound = source.resolve(name)
            if bound is None:
                state.add_unresolved(f"column '{qualifier}.{name}'")
                return
            query.bindings[id(column)] = replace(bound, correlated=correlated)
            return

        if clause_name in _ALIAS_FIRST:
            target = query.scope.output_alias(name)
            if target is not None:
                query.alias_refs[id(column)] = target
                return

        scope: Optional[Scope] = query.scope
        correlated = False
        while scope is not None:
            candidates = []
            for source in scope.sources.values():
                if source.unknown:
                    continue
                bound = source.resolve(name)
                if bound is not None:
                    candidates.append((source, bound))

            if len(candidates) > 1 and name.lower() not in scope.using_columns:
                concrete = [c for c in candidates if not c[0].opaque]
                if len(concrete) == 1:
                    candidates = concrete
                else:
                    state.ambiguous[name] = sorted(source.alias for source, _ in candidates)
                    return
            if candidates:
                query.bindings[id(column)] = replace(candidates[0][1], correlated=correlated)
                return
            if any(source.unknown for source in scope.sources.values()):
                # The column may belong to the table that was already reported
                return
            scope = scope.parent
            correlated = True

        if clause_name in _ALIAS_FALLBACK or clause_name in _ALIAS_FIRST:
            target = query.scope.output_alias(name)
            if target is not None:
                query.alias_refs[id(column)] = target
                return
        state.add_unresolved(f"column '{name}'")


def _find_source(scope: Optional[Scope], alias: str) -> tuple[Optional[Source], bool]:
    correlated = False
    while scope is not None:
        source = scope.source(alias)
        if source is not None:
            return source, correlated
        scope = scope.parent
        correlated = True
    return None, False


def _derived_identity(query: BoundQuery) -> str:
    """Positional graph identity of a CTE or derived-table source, independent of its alias."""
    return f"derived#{sum(1 for source in query.sources if source.is_derived) + 1}"


def _unique_identity(query: BoundQuery, identity: str) -> str:
    taken = {source.identity for source in query.sources}
    if identity not in taken:
        return identity
    index = 2
    while f"{identity}#{index}" in taken:
        index += 1
    return f"{identity}#{index}"


def _rename_outputs(query: BoundQuery, alias: Optional[exp.Expression]) -> None:
    """Apply a ``name(col1, col2)`` column list to a derived query's outputs."""
    if not isinstance(alias, exp.TableAlias):
        return
    names = [column.name for column in alias.args.get("columns") or []]
    if not names:
        return
    renamed = list(query.outputs)
    for index, name in enumerate(names[: len(renamed)]):
        renamed[index] = (name, renamed[index][1])
    query.outputs = renamed
