"""
Unit Tests for Parsing and Binding
==================================

Tests for parse_sql and the Binder.
"""

import pytest
from sqlglot import exp

from conftest import bind
from sql_verifier import (
    AmbiguousReferenceError,
    FailureKind,
    SchemaModel,
    SQLSyntaxError,
    TooComplexError,
    UnresolvedReferenceError,
    VerifierConfig,
)
from sql_verifier.parsing import parse_sql
from sql_verifier.parsing.bound import ColumnId


class TestParseSQL:
    """Tests for parse_sql."""

    def test_select(self) -> None:
        """Test that a SELECT parses to a Select node."""
        root = parse_sql("SELECT name FROM customers")
        assert isinstance(root, exp.Select)

    def test_trailing_semicolon(self) -> None:
        """Test that trailing semicolons are ignored."""
        root = parse_sql("SELECT name FROM customers;;")
        assert isinstance(root, exp.Select)

    def test_union(self) -> None:
        """Test that set operations are accepted."""
        root = parse_sql("SELECT id FROM customers UNION SELECT id FROM products")
        assert isinstance(root, exp.Union)

    def test_empty(self) -> None:
        """Test that empty text is a syntax error."""
        with pytest.raises(SQLSyntaxError) as info:
            parse_sql("   ")
        assert info.value.kind is FailureKind.SYNTAX_ERROR

    def test_unclosed_string(self) -> None:
        """Test that unclosed strings are caught."""
        with pytest.raises(SQLSyntaxError):
            parse_sql("SELECT * FROM customers WHERE name = 'test")

    def test_unbalanced_parenthesis(self) -> None:
        """Test that unbalanced parentheses are caught."""
        with pytest.raises(SQLSyntaxError):
            parse_sql("SELECT (name FROM customers")

    def test_multiple_statements(self) -> None:
        """Test that only a single statement is accepted."""
        with pytest.raises(SQLSyntaxError, match="single statement"):
            parse_sql("SELECT 1; SELECT 2")

    def test_not_a_query(self) -> None:
        """Test that DML is rejected."""
        with pytest.raises(SQLSyntaxError, match="expected a SELECT query") as info:
            parse_sql("DELETE FROM customers")
        assert info.value.token == "DELETE"

    def test_error_details(self) -> None:
        """Test that syntax errors carry a suggestion and serialise."""
        with pytest.raises(SQLSyntaxError) as info:
            parse_sql("SELECT (name FROM customers")
        error = info.value
        assert error.suggestion
        assert error.to_dict()["kind"] == "syntax_error"


class TestBinder:
    """Tests for reference resolution."""

    def test_aliases_resolve_to_tables(self, schema_model: SchemaModel) -> None:
        """Test that aliased columns bind to their base table identity."""
        bound = bind(
            "SELECT c.name, o.amount FROM customers c JOIN orders o ON c.id = o.customer_id",
            schema_model,
        )
        ids = {binding.id for binding in bound.bindings.values()}
        assert ColumnId("customers", "name") in ids
        assert ColumnId("orders", "amount") in ids
        assert [source.identity for source in bound.sources] == ["customers", "orders"]

    def test_unknown_table(self, schema_model: SchemaModel) -> None:
        """Test that unknown tables are unresolved references."""
        with pytest.raises(UnresolvedReferenceError) as info:
            bind("SELECT * FROM clients", schema_model)
        assert info.value.names == ["table 'clients'"]
        assert info.value.kind is FailureKind.UNRESOLVED_REFERENCE

    def test_unknown_column(self, schema_model: SchemaModel) -> None:
        """Test that unknown columns are unresolved references."""
        with pytest.raises(UnresolvedReferenceError) as info:
            bind("SELECT name, total_spent FROM customers", schema_model)
        assert "column 'total_spent'" in info.value.names

    def test_unknown_qualifier(self, schema_model: SchemaModel) -> None:
        """Test that a qualifier must name a source in scope."""
        with pytest.raises(UnresolvedReferenceError):
            bind("SELECT x.name FROM customers c", schema_model)

    def test_ambiguous_column(self, schema_model: SchemaModel) -> None:
        """Test that an unqualified column present in two sources is ambiguous."""
        with pytest.raises(AmbiguousReferenceError) as info:
            bind(
                "SELECT name FROM customers c JOIN products p ON c.id = p.id",
                schema_model,
            )
        assert info.value.candidates == {"name": ["c", "p"]}
        assert info.value.kind is FailureKind.AMBIGUOUS_REFERENCE

    def test_unresolved_beats_ambiguous(self, schema_model: SchemaModel) -> None:
        """Test that unresolved references are reported first."""
        with pytest.raises(UnresolvedReferenceError):
            bind(
                "SELECT name, missing FROM customers c JOIN products p ON c.id = p.id",
                schema_model,
            )

    def test_using_column_is_not_ambiguous(self, schema_model: SchemaModel) -> None:
        """Test that USING columns may be referenced unqualified."""
        bound = bind("SELECT id FROM customers JOIN orders USING (id)", schema_model)
        assert len(bound.bindings) == 1

    def test_correlated_subquery(self, schema_model: SchemaModel) -> None:
        """Test that inner queries resolve outer columns as correlated."""
        bound = bind(
            "SELECT name FROM customers c WHERE EXISTS "
            "(SELECT 1 FROM orders o WHERE o.customer_id = c.id)",
            schema_model,
        )
        inner = bound.children[0]
        correlated = [b for b in inner.bindings.values() if b.correlated]
        assert [b.id for b in correlated] == [ColumnId("customers", "id")]

    def test_cte_outputs(self, schema_model: SchemaModel) -> None:
        """Test that CTE outputs resolve through to their base columns."""
        bound = bind(
            "WITH premium AS (SELECT id, name FROM customers WHERE tier = 'premium') "
            "SELECT name FROM premium",
            schema_model,
        )
        outer = [b.id for b in bound.bindings.values()]
        assert outer == [ColumnId("customers", "name")]

    def test_derived_table(self, schema_model: SchemaModel) -> None:
        """Test that derived-table aliases resolve."""
        bound = bind(
            "SELECT t.total FROM (SELECT customer_id, SUM(amount) AS total "
            "FROM orders GROUP BY customer_id) AS t",
            schema_model,
        )
        assert bound.sources[0].is_derived
        assert [b.id for b in bound.bindings.values()] == [ColumnId("derived#1", "total")]

    def test_derived_identity_ignores_alias(self, schema_model: SchemaModel) -> None:
        """Test that derived tables are identified by position, not by alias."""
        sql = "SELECT {alias}.c FROM (SELECT COUNT(*) AS c FROM orders) {alias}"
        first = bind(sql.format(alias="s"), schema_model)
        second = bind(sql.format(alias="t"), schema_model)
        assert [s.identity for s in first.sources] == [s.identity for s in second.sources]
        assert list(first.bindings.values()) == list(second.bindings.values())

    def test_cte_inside_derived_table(self, schema_model: SchemaModel) -> None:
        """Test that a FROM subquery can read a CTE of the enclosing query."""
        bound = bind(
            "WITH x AS (SELECT id, name FROM customers) "
            "SELECT t.name FROM (SELECT name FROM x) t",
            schema_model,
        )
        assert [b.id for b in bound.bindings.values()] == [ColumnId("customers", "name")]

    def test_derived_table_does_not_see_siblings(self, schema_model: SchemaModel) -> None:
        """Test that a FROM subquery cannot read the other sources of its query."""
        with pytest.raises(UnresolvedReferenceError):
            bind(
                "SELECT c.name FROM customers c, (SELECT o.id FROM orders o WHERE o.id = c.id) t",
                schema_model,
            )

    def test_order_by_alias(self, schema_model: SchemaModel) -> None:
        """Test that ORDER BY may name a select-list alias."""
        bound = bind(
            "SELECT customer_id, SUM(amount) AS spent FROM orders "
            "GROUP BY customer_id ORDER BY spent DESC",
            schema_model,
        )
        assert len(bound.alias_refs) == 1

    def test_self_join_identities(self, schema_model: SchemaModel) -> None:
        """Test that a table read twice gets two graph identities."""
        bound = bind(
            "SELECT a.id FROM orders a JOIN orders b ON a.customer_id = b.customer_id",
            schema_model,
        )
        assert [source.identity for source in bound.sources] == ["orders", "orders#2"]

    def test_depth_limit(self, schema_model: SchemaModel) -> None:
        """Test that nesting beyond max_depth is too complex."""
        sql = "SELECT id FROM customers"
        for _ in range(4):
            sql = f"SELECT id FROM ({sql}) AS t"
        with pytest.raises(TooComplexError) as info:
            bind(sql, schema_model, VerifierConfig(max_depth=3))
        assert info.value.kind is FailureKind.TOO_COMPLEX

    def test_table_limit(self, schema_model: SchemaModel) -> None:
        """Test that too many row sources are too complex."""
        with pytest.raises(TooComplexError):
            bind(
                "SELECT 1 FROM customers a, customers b, customers c",
                schema_model,
                VerifierConfig(max_tables=2),
            )
