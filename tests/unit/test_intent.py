"""
Unit Tests for Intent Extraction
================================

Tests for the heuristic, reference and default extractors.
"""

import pytest

from conftest import SPEND_REQUEST
from sql_verifier import SchemaModel, UnresolvedReferenceError
from sql_verifier.facets import LimitSpec, SortDirection
from sql_verifier.intent import (
    DefaultIntentExtractor,
    HeuristicIntentExtractor,
    IntentMode,
    IntentUnderspecified,
    ReferenceIntentExtractor,
    ValueConstraint,
)
from sql_verifier.intent.lexicon import singular, surface_forms, tokenize
from sql_verifier.parsing.bound import ColumnId


class TestLexicon:
    """Tests for tokenization and schema name matching."""

    def test_tokenize_kinds(self) -> None:
        """Test word, number, quoted and symbol tokens."""
        tokens = tokenize("Orders over $1,500 with status 'shipped' and qty >= 3")
        kinds = {token.text: token.kind for token in tokens}
        assert kinds["orders"] == "word"
        assert kinds["$1,500"] == "number"
        assert kinds["'shipped'"] == "quoted"
        assert kinds[">="] == "symbol"
        assert tokens[2].value == "1500"

    def test_number_words(self) -> None:
        """Test that small number words become numbers."""
        tokens = tokenize("top five products")
        assert (tokens[1].text, tokens[1].kind) == ("5", "number")

    def test_surface_forms(self) -> None:
        """Test singular and plural forms of identifiers."""
        assert surface_forms("order_items") == {"order items", "order item"}
        assert singular("categories") == "category"


class TestHeuristicIntent:
    """Tests for HeuristicIntentExtractor."""

    def test_spend_per_customer(
        self, heuristic: HeuristicIntentExtractor, scenario_schema: SchemaModel
    ) -> None:
        """Test aggregation, grouping and ordering cues together."""
        shape = heuristic.extract(SPEND_REQUEST, scenario_schema)
        assert shape.mode is IntentMode.HEURISTIC
        assert shape.aggregation.functions == frozenset({"SUM"})
        assert shape.aggregation.measures == frozenset({ColumnId("orders", "total")})
        assert shape.aggregation.grouping_tables == frozenset({"customers"})
        assert shape.aggregation.expects_aggregation is True
        assert shape.ordering.direction is SortDirection.DESC
        assert shape.ordering.limit is None
        assert shape.joins.tables == frozenset({"customers", "orders"})

    def test_including_those_with_no(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that 'including those with no X' keeps the subject's rows."""
        shape = heuristic.extract("List customers including those with no orders", schema_model)
        assert shape.joins.preserve == frozenset({"customers"})
        assert shape.joins.required
        assert shape.joins.tables == frozenset({"customers", "orders"})

    def test_top_n(self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel) -> None:
        """Test that 'top 5' is a descending limit."""
        shape = heuristic.extract("Show the top 5 products by price", schema_model)
        assert shape.ordering.limit == LimitSpec(count=5)
        assert shape.ordering.direction is SortDirection.DESC
        assert shape.ordering.required

    def test_top_without_count(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that a bare 'top' is recorded as underspecified."""
        shape = heuristic.extract("Show the top customers", schema_model)
        assert IntentUnderspecified("sorting", "'top' without a count") in shape.notes

    def test_superlative(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that a superlative asks for a single extreme row."""
        shape = heuristic.extract("What is the most expensive product?", schema_model)
        assert shape.ordering.extremum
        assert shape.ordering.limit == LimitSpec(count=1)
        assert shape.ordering.direction is SortDirection.DESC

    def test_comparative(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that comparatives with numbers become value constraints."""
        shape = heuristic.extract("products with price over 100", schema_model)
        assert shape.filters.required
        assert shape.filters.constraints == (
            ValueConstraint("100", ColumnId("products", "price"), ">"),
        )

    def test_quoted_value(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that quoted values are tied to the preceding column."""
        shape = heuristic.extract("customers whose tier is 'premium'", schema_model)
        assert shape.filters.constraints == (
            ValueConstraint("premium", ColumnId("customers", "tier"), "="),
        )

    def test_how_many(self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel) -> None:
        """Test that 'how many' asks for a count."""
        shape = heuristic.extract("How many customers are there?", schema_model)
        assert shape.aggregation.functions == frozenset({"COUNT"})
        assert shape.aggregation.expects_aggregation is True
        assert shape.aggregation.grouping_tables is None

    def test_plain_listing(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that a listing request expects no aggregation."""
        shape = heuristic.extract("List all product names", schema_model)
        assert shape.aggregation.expects_aggregation is False
        assert shape.projection.columns == frozenset({ColumnId("products", "name")})
        assert not shape.projection.required

    def test_nothing_mapped(
        self, heuristic: HeuristicIntentExtractor, schema_model: SchemaModel
    ) -> None:
        """Test that an unrelated request leaves every facet open."""
        shape = heuristic.extract("hello world", schema_model)
        assert shape.joins.tables is None
        assert not shape.filters.required
        assert not shape.ordering.required
        assert IntentUnderspecified(
            "from_joins", "no table or column of the schema is mentioned"
        ) in shape.notes


class TestReferenceIntent:
    """Tests for ReferenceIntentExtractor."""

    def test_facets_become_requirements(self, schema_model: SchemaModel) -> None:
        """Test that every facet of the reference query is required."""
        shape = ReferenceIntentExtractor().extract(
            "premium customers", schema_model, "SELECT name FROM customers WHERE tier = 'premium'"
        )
        assert shape.mode is IntentMode.REFERENCE
        assert shape.reference is not None
        assert {p.text for p in shape.filters.predicates} == {"customers.tier = 'premium'"}
        for facet in (
            shape.projection,
            shape.joins,
            shape.filters,
            shape.aggregation,
            shape.ordering,
        ):
            assert facet.required

    def test_reference_needed(self, schema_model: SchemaModel) -> None:
        """Test that the reference extractor needs a query."""
        with pytest.raises(ValueError):
            ReferenceIntentExtractor().extract("premium customers", schema_model)

    def test_errors_propagate(self, schema_model: SchemaModel) -> None:
        """Test that a broken reference raises."""
        with pytest.raises(UnresolvedReferenceError):
            ReferenceIntentExtractor().extract("all", schema_model, "SELECT * FROM clients")


class TestDefaultIntent:
    """Tests for DefaultIntentExtractor mode selection."""

    def test_heuristic_without_reference(self, schema_model: SchemaModel) -> None:
        """Test that no reference means heuristic mode."""
        shape = DefaultIntentExtractor().extract("List customers", schema_model, "  ")
        assert shape.mode is IntentMode.HEURISTIC

    def test_reference_when_usable(self, schema_model: SchemaModel) -> None:
        """Test that a usable reference means reference mode."""
        shape = DefaultIntentExtractor().extract(
            "List customers", schema_model, "SELECT name FROM customers"
        )
        assert shape.mode is IntentMode.REFERENCE
        assert shape.notes == ()

    def test_broken_reference_falls_back(self, schema_model: SchemaModel) -> None:
        """Test that a broken reference falls back to heuristic mode with a note."""
        shape = DefaultIntentExtractor().extract(
            "List customers", schema_model, "SELEC name FROM customers"
        )
        assert shape.mode is IntentMode.HEURISTIC
        assert IntentUnderspecified(
            "reference", "reference query could not be analysed (syntax_error)"
        ) in shape.notes
