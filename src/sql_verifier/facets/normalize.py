"""
Canonicalization
================

Rewrites bound expressions into a canonical text form so that
syntactically different but equivalent expressions compare equal:

- column references become ``table.column`` identities (aliases vanish)
- select-list aliases used in ORDER BY / HAVING are expanded
- numeric literals are normalised (``5.0`` == ``5``) and literal-only
  arithmetic is folded
- comparisons are oriented with the column side on the left
"""

from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

from sqlglot import exp

from sql_verifier.facets.model import Aggregate, Predicate
from sql_verifier.parsing.bound import BoundQuery, ColumnId
from sql_verifier.parsing.tree import children, is_query

COMPARISONS = (exp.EQ, exp.NEQ, exp.GT, exp.GTE, exp.LT, exp.LTE)

_OPERATORS = {
    exp.EQ: "=",
    exp.NEQ: "<>",
    exp.GT: ">",
    exp.GTE: ">=",
    exp.LT: "<",
    exp.LTE: "<=",
}

# a < b  <=>  b > a
_FLIPPED = {
    exp.EQ: exp.EQ,
    exp.NEQ: exp.NEQ,
    exp.GT: exp.LT,
    exp.GTE: exp.LTE,
    exp.LT: exp.GT,
    exp.LTE: exp.GTE,
}

# NOT (a < b)  <=>  a >= b
_NEGATED = {
    exp.EQ: exp.NEQ,
    exp.NEQ: exp.EQ,
    exp.GT: exp.LTE,
    exp.GTE: exp.LT,
    exp.LT: exp.GTE,
    exp.LTE: exp.GT,
}

# Wrappers that change presentation but not the underlying value
PRESENTATION = (exp.Round, exp.Cast, exp.Paren)

_FOLDABLE = {
    exp.Add: lambda a, b: a + b,
    exp.Sub: lambda a, b: a - b,
    exp.Mul: lambda a, b: a * b,
}


def format_number(value: Decimal) -> str:
    text = format(value.normalize(), "f")
    return "0" if text == "-0" else text


def normalize_number(text: str) -> str:
    try:
        return format_number(Decimal(text))
    except InvalidOperation:
        return text


def conjuncts(condition: exp.Expression) -> list[exp.Expression]:
    """Split a condition on top-level AND, left to right."""
    result = []
    stack = [condition]
    while stack:
        node = stack.pop()
        while isinstance(node, exp.Paren):
            node = node.this
        if isinstance(node, exp.And):
            stack.append(node.expression)
            stack.append(node.this)
        else:
            result.append(node)
    return result


def disjuncts(condition: exp.Expression) -> list[exp.Expression]:
    result = []
    stack = [condition]
    while stack:
        node = stack.pop()
        while isinstance(node, exp.Paren):
            node = node.this
        if isinstance(node, exp.Or):
            stack.append(node.expression)
            stack.append(node.this)
        else:
            result.append(node)
    return result


def core(node: exp.Expression) -> exp.Expression:
    """Strip presentation wrappers such as ROUND and CAST."""
    while isinstance(node, PRESENTATION) and isinstance(node.this, exp.Expression):
        node = node.this
    return node


def _is_constant(node: exp.Expression) -> bool:
    return next(node.find_all(exp.Column, exp.Select), None) is None


def _walk(node: exp.Expression) -> Iterator[exp.Expression]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(children(current))))


def _normalize_literals(root: exp.Expression) -> exp.Expression:
    """Normalise numbers and fold literal-only arithmetic, bottom up."""
    for node in reversed(list(_walk(root))):
        replacement = None
        if isinstance(node, exp.Literal) and not node.is_string:
            normalized = normalize_number(node.this)
            if normalized != node.this:
                replacement = exp.Literal.number(normalized)
        elif type(node) in _FOLDABLE:
            left, right = _number(node.left), _number(node.right)
            if left is not None and right is not None:
                replacement = exp.Literal.number(format_number(_FOLDABLE[type(node)](left, right)))
        elif isinstance(node, exp.Anonymous):
            node.set("this", node.name.upper())

        if replacement is not None:
            if node is root:
                root = replacement
            else:
                node.replace(replacement)
    return root


def _number(node: exp.Expression) -> Optional[Decimal]:
    while isinstance(node, exp.Paren):
        node = node.this
    if isinstance(node, exp.Neg):
        value = _number(node.this)
        return -value if value is not None else None
    if isinstance(node, exp.Literal) and not node.is_string:
        try:
            return Decimal(node.this)
        except InvalidOperation:
            return None
    return None


class Canonicalizer:
    """Canonical forms of expressions within one bound query tree."""

    def __init__(self, bound: BoundQuery) -> None:
        self.bindings = bound.all_bindings()
        self.alias_refs = bound.all_alias_refs()

    # ------------------------------------------------------------------
    # Expressions

    def expression(self, node: exp.Expression) -> exp.Expression:
        """Return a canonical copy of ``node``; the original is untouched."""
        while isinstance(node, (exp.Alias, exp.Paren)):
            node = node.this

        copy = node.copy()
        columns: list[tuple[exp.Column, exp.Expression]] = []
        tables: list[exp.Expression] = []
        stack: list[tuple[exp.Expression, exp.Expression]] = [(node, copy)]
        while stack:
            original, duplicate = stack.pop()
            if isinstance(original, exp.Column):
                columns.append((original, duplicate))
                continue
            if isinstance(original, exp.Table):
                tables.append(duplicate)
            stack.extend(zip(children(original), children(duplicate)))

        for table in tables:
            table.set("alias", None)
        for original, duplicate in columns:
            replacement = self._column(original)
            if duplicate is copy:
                copy = replacement
            else:
                duplicate.replace(replacement)

        copy = _normalize_literals(copy)
        while isinstance(copy, exp.Paren):
            copy = copy.this
        return copy

    def text(self, node: exp.Expression) -> str:
        return self.expression(node).sql()

    def _column(self, column: exp.Column) -> exp.Expression:
        bound = self.bindings.get(id(column))
        if bound is not None:
            # Graph identities such as orders#2 are rendered unquoted
            return exp.column(
                exp.to_identifier(bound.id.column, quoted=False),
                table=exp.to_identifier(bound.id.table, quoted=False),
            )
        target = self.alias_refs.get(id(column))
        if target is not None:
            return self.expression(target)
        if isinstance(column.this, exp.Star):
            return column.copy()
        return exp.column(column.name.lower(), table=column.table.lower() or None)

    def column_id(self, node: exp.Expression) -> Optional[ColumnId]:
        """Identity of a bare column reference, following select-list aliases."""
        seen = set()
        while isinstance(node, (exp.Alias, exp.Paren, exp.Column)) and id(node) not in seen:
            seen.add(id(node))
            if isinstance(node, exp.Column):
                bound = self.bindings.get(id(node))
                if bound is not None:
                    return bound.id
                target = self.alias_refs.get(id(node))
                if target is None:
                    return None
                node = target
            else:
                node = node.this
        return None

    def _references(self, node: exp.Expression) -> Iterator[exp.Column]:
        stack = [node]
        while stack:
            current = stack.pop()
            if current is not node and is_query(current):
                continue
            if isinstance(current, exp.Column):
                target = self.alias_refs.get(id(current))
                if target is not None:
                    stack.append(target)
                else:
                    yield current
                continue
            stack.extend(children(current))

    def columns(self, node: exp.Expression) -> frozenset[ColumnId]:
        found = set()
        for column in self._references(node):
            bound = self.bindings.get(id(column))
            if bound is not None:
                found.add(bound.id)
        return frozenset(found)

    def sources(self, node: exp.Expression) -> frozenset[str]:
        """Graph nodes of the current query referenced by ``node``."""
        found = set()
        for column in self._references(node):
            bound = self.bindings.get(id(column))
            if bound is not None and not bound.correlated:
                found.add(bound.source)
        return frozenset(found)

    # ------------------------------------------------------------------
    # Aggregates

    def aggregates(self, node: exp.Expression) -> list[Aggregate]:
        """Grouping aggregates in ``node``; window functions are skipped."""
        found = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current is not node and is_query(current):
                continue
            if isinstance(current, exp.Window):
                continue
            if isinstance(current, exp.Column):
                target = self.alias_refs.get(id(current))
                if target is not None:
                    stack.append(target)
                continue
            if isinstance(current, exp.AggFunc):
                found.append(self._aggregate(current))
                continue
            stack.extend(reversed(list(children(current))))
        return found

    def _aggregate(self, node: exp.AggFunc) -> Aggregate:
        function = node.key.upper()
        argument = node.this
        distinct = False
        if isinstance(argument, exp.Distinct):
            distinct = True
            text = ", ".join(self.text(item) for item in argument.expressions)
            columns = frozenset().union(*(self.columns(item) for item in argument.expressions))
            return Aggregate(function, text, distinct=distinct, columns=columns)
        if argument is None or isinstance(argument, exp.Star):
            return Aggregate(function, "*")
        if isinstance(node, exp.Count) and isinstance(argument, exp.Literal):
            # COUNT(1) counts rows like COUNT(*)
            return Aggregate(function, "*")
        return Aggregate(function, self.text(argument), columns=self.columns(argument))

    # ------------------------------------------------------------------
    # Predicates

    def predicates(self, condition: exp.Expression, clause: str) -> list[Predicate]:
        """Flatten a WHERE / HAVING / ON condition into independent predicates."""
        result = []
        for atom in conjuncts(condition):
            result.extend(self._atom(atom, clause))
        return result

    def _atom(self, atom: exp.Expression, clause: str) -> list[Predicate]:
        if isinstance(atom, exp.Between):
            return [
                self._comparison(exp.GTE, atom.this, atom.args["low"], atom, clause),
                self._comparison(exp.LTE, atom.this, atom.args["high"], atom, clause),
            ]

        if isinstance(atom, exp.Not):
            inner = atom.this
            while isinstance(inner, exp.Paren):
                inner = inner.this
            if type(inner) in _NEGATED:
                return [
                    self._comparison(
                        _NEGATED[type(inner)], inner.this, inner.expression, atom, clause
                    )
                ]

        if (
            isinstance(atom, exp.In)
            and not atom.args.get("query")
            and len(atom.expressions) == 1
        ):
            return [self._comparison(exp.EQ, atom.this, atom.expressions[0], atom, clause)]

        if type(atom) in _OPERATORS:
            return [self._comparison(type(atom), atom.this, atom.expression, atom, clause)]

        canonical = self._condition(atom)
        return [
            Predicate(
                text=canonical.sql() if isinstance(canonical, exp.Expression) else canonical,
                columns=self.columns(atom),
                clause=clause,
                compound=isinstance(atom, exp.Or),
                literals=tuple(sorted(self._literals(atom))),
                sources=self.sources(atom),
            )
        ]

    def _comparison(
        self,
        operator: type,
        left: exp.Expression,
        right: exp.Expression,
        original: exp.Expression,
        clause: str,
    ) -> Predicate:
        left_node = self.expression(left)
        right_node = self.expression(right)
        left_text, right_text = left_node.sql(), right_node.sql()
        left_constant, right_constant = _is_constant(left_node), _is_constant(right_node)
        if (left_constant and not right_constant) or (
            left_constant == right_constant and left_text > right_text
        ):
            operator = _FLIPPED[operator]
            left_node, right_node = right_node, left_node
            left_text, right_text = right_text, left_text

        symbol = _OPERATORS[operator]
        return Predicate(
            text=f"{left_text} {symbol} {right_text}",
            columns=self.columns(original),
            clause=clause,
            op=symbol,
            left=left_text,
            right=right_text,
            literals=_literal_values(left_node) + _literal_values(right_node),
            sources=self.sources(original),
            equijoin=(
                symbol == "="
                and isinstance(left_node, exp.Column)
                and isinstance(right_node, exp.Column)
            ),
        )

    def _condition(self, node: exp.Expression):
        """Canonical text of a condition that cannot be split further."""
        while isinstance(node, exp.Paren):
            node = node.this
        if isinstance(node, exp.Or):
            parts = sorted(self._condition_text(part) for part in disjuncts(node))
            return " OR ".join(parts)
        if isinstance(node, exp.And):
            parts = sorted(self._condition_text(part) for part in conjuncts(node))
            return " AND ".join(parts)
        if type(node) in _OPERATORS or isinstance(node, exp.Between):
            return " AND ".join(p.text for p in self._atom(node, ""))
        canonical = self.expression(node)
        if isinstance(canonical, exp.In) and canonical.expressions:
            canonical.set("expressions", sorted(canonical.expressions, key=lambda e: e.sql()))
        return canonical

    def _condition_text(self, node: exp.Expression) -> str:
        result = self._condition(node)
        text = result.sql() if isinstance(result, exp.Expression) else result
        unwrapped = node
        while isinstance(unwrapped, exp.Paren):
            unwrapped = unwrapped.this
        if isinstance(unwrapped, (exp.And, exp.Or, exp.Between)):
            return f"({text})"
        return text

    def _literals(self, node: exp.Expression) -> tuple[str, ...]:
        return _literal_values(self.expression(node))


def _literal_values(node: exp.Expression) -> tuple[str, ...]:
    values = []
    for literal in _walk(node):
        if isinstance(literal, exp.Literal):
            negative = isinstance(literal.parent, exp.Neg) and not literal.is_string
            values.append(f"-{literal.this}" if negative else literal.this)
    return tuple(values)
