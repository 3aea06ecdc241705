"""
Unit Tests for the Semantic Decomposer
======================================

Tests for facet extraction and canonical forms.
"""

import pytest

from conftest import facets_of
from sql_verifier import SchemaModel
from sql_verifier.facets import JoinKind, LimitSpec, SortDirection
from sql_verifier.parsing.bound import ColumnId


class TestProjection:
    """Tests for the projection facet."""

    def test_aliases_vanish(self, schema_model: SchemaModel) -> None:
        """Test that table aliases are replaced by table names."""
        facets = facets_of("SELECT c.name AS customer FROM customers AS c", schema_model)
        assert [item.text for item in facets.projection] == ["customers.name"]
        assert facets.projection[0].column == ColumnId("customers", "name")
        assert facets.projection[0].alias == "customer"

    def test_star_expansion(self, schema_model: SchemaModel) -> None:
        """Test that * expands to every column of every source."""
        facets = facets_of("SELECT * FROM products", schema_model)
        assert [item.text for item in facets.projection] == [
            "products.id",
            "products.name",
            "products.price",
            "products.category",
            "products.stock",
        ]

    def test_aggregate_projection(self, schema_model: SchemaModel) -> None:
        """Test that aggregate outputs are flagged."""
        facets = facets_of("SELECT COUNT(*), MAX(price) FROM products", schema_model)
        assert [item.is_aggregate for item in facets.projection] == [True, True]
        assert {str(a) for a in facets.aggregates} == {"COUNT(*)", "MAX(products.price)"}

    def test_rounding_core(self, schema_model: SchemaModel) -> None:
        """Test that ROUND is stripped from the core form."""
        facets = facets_of("SELECT ROUND(AVG(price), 2) FROM products", schema_model)
        assert facets.projection[0].core == "AVG(products.price)"


class TestJoinGraph:
    """Tests for the join graph facet."""

    def test_inner_join(self, schema_model: SchemaModel) -> None:
        """Test a single inner join edge with its condition."""
        facets = facets_of(
            "SELECT c.name FROM customers c JOIN orders o ON o.customer_id = c.id",
            schema_model,
        )
        (edge,) = facets.joins.edges
        assert facets.joins.nodes == frozenset({"customers", "orders"})
        assert (edge.left, edge.right) == ("customers", "orders")
        assert edge.kind is JoinKind.INNER
        assert edge.condition == "customers.id = orders.customer_id"
        assert edge.preserved == frozenset()

    def test_left_join_preserves_left(self, schema_model: SchemaModel) -> None:
        """Test that LEFT JOIN keeps rows of the left input."""
        facets = facets_of(
            "SELECT c.name FROM customers c LEFT JOIN orders o ON c.id = o.customer_id",
            schema_model,
        )
        (edge,) = facets.joins.edges
        assert edge.kind is JoinKind.LEFT
        assert edge.preserved == frozenset({"customers"})

    def test_right_join_is_mirrored(self, schema_model: SchemaModel) -> None:
        """Test that RIGHT JOIN from orders equals LEFT JOIN from customers."""
        right = facets_of(
            "SELECT c.name FROM orders o RIGHT JOIN customers c ON c.id = o.customer_id",
            schema_model,
        )
        left = facets_of(
            "SELECT c.name FROM customers c LEFT JOIN orders o ON c.id = o.customer_id",
            schema_model,
        )
        assert right.joins == left.joins

    def test_comma_join_with_where_equality(self, schema_model: SchemaModel) -> None:
        """Test that a WHERE equality between comma-joined tables becomes a join edge."""
        implicit = facets_of(
            "SELECT c.name FROM customers c, orders o WHERE c.id = o.customer_id",
            schema_model,
        )
        explicit = facets_of(
            "SELECT c.name FROM customers c JOIN orders o ON c.id = o.customer_id",
            schema_model,
        )
        assert implicit.joins == explicit.joins
        assert implicit.filters == frozenset()

    def test_cross_join(self, schema_model: SchemaModel) -> None:
        """Test that a comma join without a condition is a cross edge."""
        facets = facets_of("SELECT 1 FROM customers, products", schema_model)
        (edge,) = facets.joins.edges
        assert edge.kind is JoinKind.CROSS
        assert not facets.joins.connected("customers", "products")
        assert facets.joins.path("customers", "products", include_cross=True) == [edge]

    def test_using_condition(self, schema_model: SchemaModel) -> None:
        """Test that USING renders as an equality condition."""
        facets = facets_of("SELECT 1 FROM customers JOIN orders USING (id)", schema_model)
        (edge,) = facets.joins.edges
        assert edge.condition == "customers.id = orders.id"


class TestFilters:
    """Tests for predicate canonicalization."""

    def test_constant_on_the_right(self, schema_model: SchemaModel) -> None:
        """Test that comparisons are oriented column first."""
        a = facets_of("SELECT id FROM products WHERE 10 < price", schema_model)
        b = facets_of("SELECT id FROM products WHERE price > 10", schema_model)
        assert a.filters == b.filters
        (predicate,) = a.filters
        assert predicate.text == "products.price > 10"
        assert predicate.op == ">"

    def test_numbers_normalised(self, schema_model: SchemaModel) -> None:
        """Test that 10.0 and 10 are the same literal."""
        a = facets_of("SELECT id FROM products WHERE price > 10.0", schema_model)
        b = facets_of("SELECT id FROM products WHERE price > 10", schema_model)
        assert a.filters == b.filters

    def test_conjunctions_split(self, schema_model: SchemaModel) -> None:
        """Test that AND splits into independent predicates in any order."""
        a = facets_of(
            "SELECT id FROM products WHERE price > 10 AND category = 'toys'", schema_model
        )
        b = facets_of(
            "SELECT id FROM products WHERE category = 'toys' AND price > 10", schema_model
        )
        assert a.filters == b.filters
        assert len(a.filters) == 2

    def test_between(self, schema_model: SchemaModel) -> None:
        """Test that BETWEEN becomes two bounds."""
        facets = facets_of(
            "SELECT id FROM products WHERE price BETWEEN 5 AND 10", schema_model
        )
        assert {p.text for p in facets.filters} == {
            "products.price >= 5",
            "products.price <= 10",
        }

    def test_negated_comparison(self, schema_model: SchemaModel) -> None:
        """Test that NOT (a < b) is a >= b."""
        a = facets_of("SELECT id FROM products WHERE NOT price < 10", schema_model)
        b = facets_of("SELECT id FROM products WHERE price >= 10", schema_model)
        assert {p.text for p in a.filters} == {p.text for p in b.filters}

    def test_or_group_is_one_predicate(self, schema_model: SchemaModel) -> None:
        """Test that OR groups stay together with sorted operands."""
        a = facets_of(
            "SELECT id FROM customers WHERE tier = 'gold' OR tier = 'premium'", schema_model
        )
        b = facets_of(
            "SELECT id FROM customers WHERE tier = 'premium' OR tier = 'gold'", schema_model
        )
        (predicate,) = a.filters
        assert predicate.compound
        assert a.filters == b.filters

    def test_having_clause(self, schema_model: SchemaModel) -> None:
        """Test that HAVING predicates are kept with their clause."""
        facets = facets_of(
            "SELECT customer_id FROM orders GROUP BY customer_id HAVING SUM(amount) > 500",
            schema_model,
        )
        (predicate,) = facets.filters
        assert predicate.clause == "having"
        assert predicate.text == "SUM(orders.amount) > 500"


class TestAggregationAndOrdering:
    """Tests for grouping, ordering and limits."""

    def test_count_star_and_count_column_differ(self, schema_model: SchemaModel) -> None:
        """Test that COUNT(*) and COUNT(col) are different aggregates."""
        star = facets_of("SELECT COUNT(*) FROM orders", schema_model)
        column = facets_of("SELECT COUNT(id) FROM orders", schema_model)
        assert star.aggregates != column.aggregates
        one = facets_of("SELECT COUNT(1) FROM orders", schema_model)
        assert one.aggregates == star.aggregates

    def test_count_distinct(self, schema_model: SchemaModel) -> None:
        """Test that DISTINCT is part of the aggregate."""
        facets = facets_of("SELECT COUNT(DISTINCT customer_id) FROM orders", schema_model)
        (aggregate,) = facets.aggregates
        assert aggregate.distinct
        assert str(aggregate) == "COUNT(DISTINCT orders.customer_id)"

    def test_group_by_ordinal(self, schema_model: SchemaModel) -> None:
        """Test that GROUP BY 1 resolves to the first output."""
        facets = facets_of(
            "SELECT customer_id, COUNT(*) FROM orders GROUP BY 1", schema_model
        )
        assert facets.grouping == frozenset({ColumnId("orders", "customer_id")})

    def test_order_by_alias_and_ordinal(self, schema_model: SchemaModel) -> None:
        """Test that ORDER BY alias, ordinal and expression agree."""
        sqls = [
            "SELECT customer_id, SUM(amount) AS spent FROM orders GROUP BY customer_id "
            "ORDER BY spent DESC",
            "SELECT customer_id, SUM(amount) AS spent FROM orders GROUP BY customer_id "
            "ORDER BY 2 DESC",
            "SELECT customer_id, SUM(amount) AS spent FROM orders GROUP BY customer_id "
            "ORDER BY SUM(amount) DESC",
        ]
        orderings = {facets_of(sql, schema_model).ordering for sql in sqls}
        assert len(orderings) == 1
        (item,) = orderings.pop()
        assert item.expression == "SUM(orders.amount)"
        assert item.direction is SortDirection.DESC

    def test_limit_and_offset(self, schema_model: SchemaModel) -> None:
        """Test LIMIT with OFFSET."""
        facets = facets_of("SELECT id FROM products LIMIT 5 OFFSET 10", schema_model)
        assert facets.limit == LimitSpec(count=5, offset=10)

    def test_unbounded(self, schema_model: SchemaModel) -> None:
        """Test that a query without LIMIT is unbounded."""
        facets = facets_of("SELECT id FROM products", schema_model)
        assert not facets.limit.bounded
        assert str(facets.limit) == "unbounded"


class TestNestedQueries:
    """Tests for subqueries and set operations."""

    def test_subquery_facets(self, schema_model: SchemaModel) -> None:
        """Test that subqueries keep their own facets."""
        facets = facets_of(
            "SELECT name FROM customers WHERE id IN "
            "(SELECT customer_id FROM orders WHERE amount > 100)",
            schema_model,
        )
        (inner,) = facets.nested
        assert {p.text for p in inner.filters} == {"orders.amount > 100"}
        assert len(list(facets.walk())) == 2

    def test_union_branches(self, schema_model: SchemaModel) -> None:
        """Test that each UNION branch is decomposed."""
        facets = facets_of(
            "SELECT name FROM customers UNION ALL SELECT name FROM products", schema_model
        )
        assert facets.set_operations == ("UNION ALL",)
        assert [b.projection[0].text for b in facets.branches] == ["products.name"]

    def test_deterministic(self, schema_model: SchemaModel) -> None:
        """Test that decomposing twice gives equal facets."""
        sql = (
            "SELECT c.name, COUNT(o.id) FROM customers c LEFT JOIN orders o "
            "ON c.id = o.customer_id WHERE c.tier = 'gold' GROUP BY c.name "
            "ORDER BY 2 DESC LIMIT 3"
        )
        assert facets_of(sql, schema_model) == facets_of(sql, schema_model)


class TestDerivedSources:
    """Tests for CTEs and derived tables in FROM."""

    def test_pass_through_cte_folds(self, schema_model: SchemaModel) -> None:
        """Test that a filtering CTE has the facets of the direct query."""
        through_cte = facets_of(
            "WITH big AS (SELECT customer_id, amount FROM orders WHERE amount > 100) "
            "SELECT customer_id FROM big",
            schema_model,
        )
        direct = facets_of("SELECT customer_id FROM orders WHERE amount > 100", schema_model)
        assert through_cte == direct
        assert through_cte.joins.nodes == frozenset({"orders"})
        assert through_cte.nested == ()

    def test_pass_through_derived_join_folds(self, schema_model: SchemaModel) -> None:
        """Test that a joined derived table is replaced by the table it reads."""
        derived = facets_of(
            "SELECT c.name FROM customers c JOIN "
            "(SELECT customer_id FROM orders WHERE status = 'shipped') o "
            "ON o.customer_id = c.id",
            schema_model,
        )
        direct = facets_of(
            "SELECT c.name FROM customers c JOIN orders o ON o.customer_id = c.id "
            "WHERE o.status = 'shipped'",
            schema_model,
        )
        assert derived.joins == direct.joins
        assert derived.filters == direct.filters

    def test_filtered_optional_side_is_kept(self, schema_model: SchemaModel) -> None:
        """Test that a filtered derived table on the optional side of a LEFT JOIN stays."""
        facets = facets_of(
            "SELECT c.name FROM customers c LEFT JOIN "
            "(SELECT customer_id FROM orders WHERE status = 'shipped') o "
            "ON o.customer_id = c.id",
            schema_model,
        )
        assert facets.joins.nodes == frozenset({"customers", "derived#1"})
        assert facets.filters == frozenset()

    def test_aggregating_cte_is_kept(self, schema_model: SchemaModel) -> None:
        """Test that a grouped CTE stays a node of its own."""
        facets = facets_of(
            "WITH spend AS (SELECT customer_id, SUM(amount) AS total FROM orders "
            "GROUP BY customer_id) "
            "SELECT c.name, s.total FROM customers c JOIN spend s ON s.customer_id = c.id",
            schema_model,
        )
        assert facets.joins.nodes == frozenset({"customers", "derived#1"})
        assert [item.text for item in facets.projection] == [
            "customers.name",
            "derived#1.total",
        ]

    def test_derived_alias_is_irrelevant(self, schema_model: SchemaModel) -> None:
        """Test that renaming a derived table does not change its facets."""
        sql = "SELECT {alias}.c FROM (SELECT COUNT(*) AS c FROM orders) {alias}"
        first = facets_of(sql.format(alias="s"), schema_model)
        second = facets_of(sql.format(alias="t"), schema_model)
        assert first == second
        assert first.projection[0].text == "derived#1.c"

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT c.name, o.amount FROM customers c JOIN orders o ON c.id = o.customer_id "
            "WHERE o.amount > 10 ORDER BY o.amount",
            "SELECT id, name FROM customers JOIN orders USING (id)",
            "SELECT name FROM customers c WHERE EXISTS "
            "(SELECT 1 FROM orders o WHERE o.customer_id = c.id)",
            "WITH big AS (SELECT customer_id, amount FROM orders WHERE amount > 100) "
            "SELECT customer_id FROM big",
            "WITH spend AS (SELECT customer_id, SUM(amount) AS total FROM orders "
            "GROUP BY customer_id) "
            "SELECT c.name, s.total FROM customers c JOIN spend s ON s.customer_id = c.id",
            "SELECT c.name FROM customers c JOIN "
            "(SELECT customer_id FROM orders WHERE status = 'shipped') o "
            "ON o.customer_id = c.id GROUP BY c.name",
        ],
    )
    def test_referenced_sources_are_graph_nodes(self, sql: str, schema_model: SchemaModel) -> None:
        """Test that every referenced source is a node of its query's join graph."""
        facets = facets_of(sql, schema_model)
        for level in facets.walk():
            assert level.dangling_sources() == frozenset()
        assert facets.referenced_sources
