"""
Pytest Fixtures
===============

Shared fixtures for SQL semantic verifier tests.
"""

import sys
from pathlib import Path

import pytest

# Add src and the repository root (api, observability, mlops) to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from sql_verifier import SAMPLE_SCHEMA, SchemaModel, SemanticVerifier, VerifierConfig
from sql_verifier.facets import QueryFacets, decompose
from sql_verifier.intent import HeuristicIntentExtractor, IntentShape
from sql_verifier.models import MatchStatus
from sql_verifier.parsing import Binder, BoundQuery, parse_sql

SCENARIO_SCHEMA = {
    "customers": {
        "columns": ["id", "name"],
        "types": {"id": "INTEGER", "name": "TEXT"},
        "primary_key": ["id"],
    },
    "orders": {
        "columns": ["id", "customer_id", "total"],
        "types": {"id": "INTEGER", "customer_id": "INTEGER", "total": "DECIMAL"},
        "primary_key": ["id"],
        "foreign_keys": {"customer_id": "customers.id"},
    },
}

SPEND_REQUEST = "total spend per customer, highest first"

SPEND_SQL = (
    "SELECT c.name, SUM(o.total) FROM customers c "
    "JOIN orders o ON c.id = o.customer_id "
    "GROUP BY c.name ORDER BY SUM(o.total) DESC"
)


@pytest.fixture
def sample_schema() -> dict:
    """Return the sample customers/orders/products schema."""
    return SAMPLE_SCHEMA


@pytest.fixture
def schema_model() -> SchemaModel:
    """Return the sample schema as a SchemaModel."""
    return SchemaModel.from_dict(SAMPLE_SCHEMA)


@pytest.fixture
def scenario_schema() -> SchemaModel:
    """Return the two-table customers/orders schema."""
    return SchemaModel.from_dict(SCENARIO_SCHEMA)


@pytest.fixture
def config() -> VerifierConfig:
    """Create a default configuration."""
    return VerifierConfig()


@pytest.fixture
def verifier(schema_model: SchemaModel) -> SemanticVerifier:
    """Create a verifier over the sample schema."""
    return SemanticVerifier(schema=schema_model)


@pytest.fixture
def scenario_verifier(scenario_schema: SchemaModel) -> SemanticVerifier:
    """Create a verifier over the customers/orders schema."""
    return SemanticVerifier(schema=scenario_schema)


@pytest.fixture
def heuristic() -> HeuristicIntentExtractor:
    """Create a HeuristicIntentExtractor instance."""
    return HeuristicIntentExtractor()


def bind(sql: str, schema: SchemaModel, config: VerifierConfig = None) -> BoundQuery:
    """Parse and bind a query."""
    return Binder(schema, config).bind(parse_sql(sql))


def facets_of(sql: str, schema: SchemaModel) -> QueryFacets:
    """Parse, bind and decompose a query."""
    return decompose(bind(sql, schema))


def reference_intent(sql: str, schema: SchemaModel) -> IntentShape:
    """Expected shape taken from a reference query."""
    return IntentShape.from_facets(facets_of(sql, schema))


def assert_match(result) -> None:
    """Helper assertion for facet results."""
    assert result.status == MatchStatus.MATCH, f"Expected MATCH, got: {result.note}"


def assert_mismatch(result) -> None:
    """Helper assertion for facet results."""
    assert result.status == MatchStatus.MISMATCH, f"Expected MISMATCH, got: {result.note}"
