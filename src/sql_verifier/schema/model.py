"""
Schema Model
============

Typed, read-only representation of tables, columns, keys and relationships.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from sql_verifier.errors import SchemaError


@dataclass(frozen=True)
class Column:
    """A single table column."""

    name: str
    type: str = "TEXT"
    nullable: bool = True


@dataclass(frozen=True)
class ForeignKey:
    """A foreign key edge ``table.column -> ref_table.ref_column``."""

    table: str
    column: str
    ref_table: str
    ref_column: str

    def other(self, table: str) -> str:
        """Return the table at the opposite end of the edge."""
        return self.ref_table if table == self.table else self.table

    def __str__(self) -> str:
        return f"{self.table}.{self.column} -> {self.ref_table}.{self.ref_column}"


def _lookup(items: dict[str, Any], name: str) -> Any:
    """Case-insensitive lookup preferring an exact match."""
    if name in items:
        return items[name]
    folded = name.lower()
    matches = [value for key, value in items.items() if key.lower() == folded]
    if len(matches) == 1:
        return matches[0]
    return None


@dataclass
class Table:
    """A table with its columns and keys."""

    name: str
    columns: tuple[Column, ...]
    primary_key: frozenset[str] = frozenset()
    foreign_keys: tuple[ForeignKey, ...] = ()
    _index: dict[str, Column] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.columns = tuple(self.columns)
        self.primary_key = frozenset(self.primary_key)
        self.foreign_keys = tuple(self.foreign_keys)
        self._index = {}
        seen: set[str] = set()
        for column in self.columns:
            if column.name.lower() in seen:
                raise SchemaError(f"Duplicate column '{column.name}' in table '{self.name}'")
            seen.add(column.name.lower())
            self._index[column.name] = column
        for key in self.primary_key:
            if self.column(key) is None:
                raise SchemaError(f"Primary key column '{key}' not found in table '{self.name}'")

    def column(self, name: str) -> Optional[Column]:
        return _lookup(self._index, name)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def references(self, column: str, table: str) -> bool:
        """Whether ``column`` of this table is a foreign key into ``table``."""
        return any(
            fk.column.lower() == column.lower() and fk.ref_table == table
            for fk in self.foreign_keys
        )


class SchemaModel:
    """
    Read-only schema metadata.

    Built once per session and shared by concurrent evaluations; nothing
    in the verifier mutates it.
    """

    def __init__(self, tables: Iterable[Table]) -> None:
        self._tables: dict[str, Table] = {}
        seen: set[str] = set()
        for table in _canonical_foreign_keys(list(tables)):
            if table.name.lower() in seen:
                raise SchemaError(f"Duplicate table '{table.name}'")
            seen.add(table.name.lower())
            self._tables[table.name] = table

        for table in self._tables.values():
            for fk in table.foreign_keys:
                target = self.resolve_table(fk.ref_table)
                if target is None:
                    raise SchemaError(f"Foreign key {fk} references unknown table '{fk.ref_table}'")
                if target.column(fk.ref_column) is None:
                    raise SchemaError(
                        f"Foreign key {fk} references unknown column '{fk.ref_column}'"
                    )

    @property
    def tables(self) -> list[Table]:
        return list(self._tables.values())

    @property
    def table_names(self) -> list[str]:
        return list(self._tables)

    def resolve_table(self, name: str) -> Optional[Table]:
        """Return the table called ``name``, or None when it does not exist."""
        return _lookup(self._tables, name)

    def resolve_column(self, table: str | Table, name: str) -> Optional[Column]:
        """Return column ``name`` of ``table``, or None when either is missing."""
        resolved = table if isinstance(table, Table) else self.resolve_table(table)
        if resolved is None:
            return None
        return resolved.column(name)

    def foreign_keys(self) -> list[ForeignKey]:
        return [fk for table in self._tables.values() for fk in table.foreign_keys]

    def foreign_key_path(self, table_a: str, table_b: str) -> Optional[list[ForeignKey]]:
        """
        Shortest foreign-key path between two tables.

        The FK graph is treated as undirected. Neighbours are visited in
        lexical order so the same path is returned on every call.

        Returns:
            Ordered list of FK edges, an empty list when both names refer to
            the same table, or None when no path exists.
        """
        start = self.resolve_table(table_a)
        goal = self.resolve_table(table_b)
        if start is None or goal is None:
            return None
        if start.name == goal.name:
            return []

        adjacency: dict[str, list[ForeignKey]] = {name: [] for name in self._tables}
        for fk in self.foreign_keys():
            adjacency[fk.table].append(fk)
            if fk.ref_table != fk.table:
                adjacency[fk.ref_table].append(fk)
        for edges in adjacency.values():
            edges.sort(key=lambda fk: (fk.table, fk.column, fk.ref_table, fk.ref_column))

        previous: dict[str, tuple[str, ForeignKey]] = {}
        visited = {start.name}
        queue = deque([start.name])
        while queue:
            current = queue.popleft()
            if current == goal.name:
                break
            for fk in adjacency[current]:
                neighbour = fk.other(current)
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                previous[neighbour] = (current, fk)
                queue.append(neighbour)

        if goal.name not in visited:
            return None

        path: list[ForeignKey] = []
        node = goal.name
        while node != start.name:
            node, fk = previous[node]
            path.append(fk)
        path.reverse()
        return path

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the mapping accepted by ``from_dict``."""
        data: dict[str, Any] = {}
        for table in self._tables.values():
            data[table.name] = {
                "columns": [
                    {"name": c.name, "type": c.type, "nullable": c.nullable}
                    for c in table.columns
                ],
                "primary_key": sorted(table.primary_key),
                "foreign_keys": {
                    fk.column: f"{fk.ref_table}.{fk.ref_column}" for fk in table.foreign_keys
                },
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchemaModel":
        """
        Build a schema from a table mapping.

        Accepts the plain ``{"columns": [...], "types": {...}}`` form and the
        extended form with ``primary_key``, ``foreign_keys`` and ``not_null``::

            {
                "orders": {
                    "columns": ["id", "customer_id", "total"],
                    "types": {"id": "INTEGER", "total": "DECIMAL"},
                    "primary_key": ["id"],
                    "foreign_keys": {"customer_id": "customers.id"},
                }
            }

        Columns may also be given as ``{"name", "type", "nullable"}`` dicts.
        """
        if not isinstance(data, dict):
            raise SchemaError("Schema must be a mapping of table name to definition")

        tables = []
        for table_name, info in data.items():
            if isinstance(info, list):
                info = {"columns": info}
            if not isinstance(info, dict) or "columns" not in info:
                raise SchemaError(f"Table '{table_name}' has no column list")

            types = info.get("types", {})
            primary_key = list(info.get("primary_key", []))
            not_null = {name.lower() for name in info.get("not_null", [])}
            not_null.update(name.lower() for name in primary_key)

            columns = []
            for entry in info["columns"]:
                if isinstance(entry, dict):
                    name = entry["name"]
                    col_type = entry.get("type", types.get(name, "TEXT"))
                    nullable = entry.get("nullable", name.lower() not in not_null)
                else:
                    name = str(entry)
                    col_type = types.get(name, "TEXT")
                    nullable = name.lower() not in not_null
                columns.append(Column(name=name, type=str(col_type), nullable=bool(nullable)))

            foreign_keys = []
            raw_fks = info.get("foreign_keys", {})
            if isinstance(raw_fks, dict):
                raw_fks = [{"column": col, "references": ref} for col, ref in raw_fks.items()]
            for fk in raw_fks:
                reference = fk["references"]
                if "." not in reference:
                    raise SchemaError(
                        f"Foreign key reference '{reference}' must look like 'table.column'"
                    )
                ref_table, ref_column = reference.rsplit(".", 1)
                foreign_keys.append(
                    ForeignKey(
                        table=table_name,
                        column=fk["column"],
                        ref_table=ref_table,
                        ref_column=ref_column,
                    )
                )

            tables.append(
                Table(
                    name=table_name,
                    columns=tuple(columns),
                    primary_key=frozenset(primary_key),
                    foreign_keys=tuple(foreign_keys),
                )
            )

        return cls(tables)

    @classmethod
    def from_ddl(cls, ddl: str, dialect: Optional[str] = None) -> "SchemaModel":
        """
        Build a schema from ``CREATE TABLE`` statements.

        Statements other than ``CREATE TABLE`` (sample ``INSERT`` rows, for
        example) are ignored.
        """
        try:
            statements = sqlglot.parse(ddl, read=dialect)
        except SqlglotError as e:
            raise SchemaError(f"Could not parse schema DDL: {e}") from e

        tables = []
        for statement in statements:
            if not isinstance(statement, exp.Create):
                continue
            if str(statement.args.get("kind") or "").upper() != "TABLE":
                continue
            tables.append(_table_from_create(statement))

        if not tables:
            raise SchemaError("Schema DDL contains no CREATE TABLE statements")
        return cls(tables)

    def __contains__(self, name: str) -> bool:
        return self.resolve_table(name) is not None

    def __repr__(self) -> str:
        return f"SchemaModel(tables={self.table_names!r})"


def _canonical_foreign_keys(tables: list[Table]) -> list[Table]:
    """Rewrite FK targets to the declared spelling of table and column names."""
    by_name = {table.name.lower(): table for table in tables}
    result = []
    for table in tables:
        fks = []
        for fk in table.foreign_keys:
            target = by_name.get(fk.ref_table.lower())
            ref_table = target.name if target else fk.ref_table
            ref_column = fk.ref_column
            if target is not None and target.column(fk.ref_column) is not None:
                ref_column = target.column(fk.ref_column).name
            local = table.column(fk.column)
            if local is None:
                raise SchemaError(f"Foreign key column '{fk.column}' not found in '{table.name}'")
            fks.append(ForeignKey(table.name, local.name, ref_table, ref_column))
        result.append(
            Table(
                name=table.name,
                columns=table.columns,
                primary_key=frozenset(
                    table.column(key).name for key in table.primary_key
                ),
                foreign_keys=tuple(fks),
            )
        )
    return result


def _key_names(nodes: Iterable[exp.Expression]) -> list[str]:
    names = []
    for node in nodes:
        if isinstance(node, exp.Ordered):
            node = node.this
        names.append(node.name)
    return names


def _reference_target(reference: exp.Expression) -> tuple[str, list[str]]:
    target = reference.this
    if isinstance(target, exp.Schema):
        return target.this.name, _key_names(target.expressions)
    return target.name, []


def _table_from_create(create: exp.Create) -> Table:
    target = create.this
    table_expr = target.this if isinstance(target, exp.Schema) else target
    table_name = table_expr.name
    definitions = target.expressions if isinstance(target, exp.Schema) else []

    columns: list[Column] = []
    primary_key: list[str] = []
    foreign_keys: list[ForeignKey] = []

    for definition in definitions:
        if isinstance(definition, exp.ColumnDef):
            name = definition.name
            kind = definition.args.get("kind")
            nullable = True
            for constraint in definition.args.get("constraints") or []:
                ckind = constraint
                if isinstance(constraint, exp.ColumnConstraint):
                    ckind = constraint.args.get("kind")
                if isinstance(ckind, exp.PrimaryKeyColumnConstraint):
                    primary_key.append(name)
                    nullable = False
                elif isinstance(ckind, exp.NotNullColumnConstraint):
                    nullable = bool(ckind.args.get("allow_null"))
                elif isinstance(ckind, exp.Reference):
                    ref_table, ref_columns = _reference_target(ckind)
                    ref_column = ref_columns[0] if ref_columns else "id"
                    foreign_keys.append(ForeignKey(table_name, name, ref_table, ref_column))
            col_type = kind.sql() if kind is not None else "TEXT"
            columns.append(Column(name=name, type=col_type, nullable=nullable))
        elif isinstance(definition, exp.PrimaryKey):
            primary_key.extend(_key_names(definition.expressions))
        elif isinstance(definition, exp.ForeignKey):
            reference = definition.args.get("reference")
            if reference is None:
                continue
            ref_table, ref_columns = _reference_target(reference)
            local_columns = _key_names(definition.expressions)
            for index, local in enumerate(local_columns):
                ref_column = ref_columns[index] if index < len(ref_columns) else "id"
                foreign_keys.append(ForeignKey(table_name, local, ref_table, ref_column))
        elif isinstance(definition, exp.Constraint):
            for inner in definition.expressions:
                if isinstance(inner, exp.PrimaryKey):
                    primary_key.extend(_key_names(inner.expressions))
                elif isinstance(inner, exp.ForeignKey) and inner.args.get("reference") is not None:
                    ref_table, ref_columns = _reference_target(inner.args["reference"])
                    for index, local in enumerate(_key_names(inner.expressions)):
                        ref_column = ref_columns[index] if index < len(ref_columns) else "id"
                        foreign_keys.append(ForeignKey(table_name, local, ref_table, ref_column))

    pk_folded = {key.lower() for key in primary_key}
    columns = [
        Column(c.name, c.type, False) if c.name.lower() in pk_folded else c for c in columns
    ]
    return Table(
        name=table_name,
        columns=tuple(columns),
        primary_key=frozenset(primary_key),
        foreign_keys=tuple(foreign_keys),
    )
