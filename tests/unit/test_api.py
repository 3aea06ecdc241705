"""
Unit Tests for the HTTP API
===========================

Tests for the verify, batch and health endpoints.
"""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import SCENARIO_SCHEMA, SPEND_REQUEST, SPEND_SQL
from sql_verifier import SemanticVerifier


@pytest.fixture
def client(verifier: SemanticVerifier) -> Iterator[TestClient]:
    """Test client serving the sample-schema verifier."""
    with TestClient(create_app(verifier)) as test_client:
        yield test_client


class TestVerifyEndpoint:
    """Tests for POST /api/v1/verify."""

    def test_correct_query(self, client: TestClient) -> None:
        """Test a verdict for a request-specific schema."""
        response = client.post(
            "/api/v1/verify",
            json={"schema": SCENARIO_SCHEMA, "nl_query": SPEND_REQUEST, "sql_query": SPEND_SQL},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["correct"] is True
        assert body["stage"] == "aggregated"
        assert body["failure"] is None
        assert body["confidence"] == pytest.approx(0.85)
        assert set(body["components"]) == {
            "select",
            "from_joins",
            "filters",
            "aggregations",
            "sorting",
        }

    def test_reference_mode(self, client: TestClient) -> None:
        """Test that the reference query drives the comparison."""
        response = client.post(
            "/api/v1/verify",
            json={
                "nl_query": "premium customer names",
                "sql_query": "SELECT name FROM customers",
                "reference_query": "SELECT name FROM customers WHERE tier = 'premium'",
            },
        )
        body = response.json()
        assert body["correct"] is False
        assert body["issues"] == [
            "Filter mismatch: missing condition customers.tier = 'premium'"
        ]

    def test_unparseable_query_is_a_verdict(self, client: TestClient) -> None:
        """Test that query errors are reported in the verdict, not as HTTP errors."""
        response = client.post(
            "/api/v1/verify",
            json={"nl_query": "all customers", "sql_query": "SELECT * FROM clients"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["correct"] is False
        assert body["stage"] == "failed"
        assert body["failure"] == "unresolved_reference"
        assert body["confidence"] == 1.0

    def test_ddl_schema(self, client: TestClient) -> None:
        """Test that the schema may be given as CREATE TABLE statements."""
        ddl = (
            "CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT);"
            "CREATE TABLE books (id INTEGER PRIMARY KEY, title TEXT, author_id INTEGER "
            "REFERENCES authors (id));"
        )
        response = client.post(
            "/api/v1/verify",
            json={
                "schema": ddl,
                "nl_query": "List book titles",
                "sql_query": "SELECT title FROM books",
            },
        )
        assert response.status_code == 200
        assert response.json()["correct"] is True

    def test_extract_sql(self, client: TestClient) -> None:
        """Test that SQL is pulled out of model output on request."""
        response = client.post(
            "/api/v1/verify",
            json={
                "nl_query": "List customer names",
                "sql_query": "Sure:\n```sql\nSELECT name FROM customers;\n```",
                "extract_sql": True,
            },
        )
        body = response.json()
        assert body["stage"] == "aggregated"
        assert body["correct"] is True

    def test_invalid_schema(self, client: TestClient) -> None:
        """Test that an invalid schema is a 400."""
        response = client.post(
            "/api/v1/verify",
            json={"schema": {"t": {"types": {}}}, "nl_query": "x", "sql_query": "SELECT 1"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidSchema"

    def test_empty_request_text(self, client: TestClient) -> None:
        """Test that an empty request is a validation error."""
        response = client.post(
            "/api/v1/verify", json={"nl_query": "", "sql_query": "SELECT 1"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert body["details"]["errors"][0]["loc"][-1] == "nl_query"

    def test_request_id(self, client: TestClient) -> None:
        """Test that the request ID is propagated."""
        response = client.post(
            "/api/v1/verify",
            json={"nl_query": "all customers", "sql_query": "SELECT * FROM customers"},
            headers={"X-Request-ID": "req-123"},
        )
        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Response-Time-Ms" in response.headers
        assert response.json()["request_id"] == "req-123"


class TestBatchEndpoint:
    """Tests for POST /api/v1/verify/batch."""

    def test_batch_summary(self, client: TestClient) -> None:
        """Test that verdicts come back in order with a summary."""
        response = client.post(
            "/api/v1/verify/batch",
            json={
                "items": [
                    {"schema": SCENARIO_SCHEMA, "nl_query": SPEND_REQUEST, "sql_query": SPEND_SQL},
                    {"nl_query": "all customers", "sql_query": "SELECT * FROM clients"},
                    {
                        "schema": SCENARIO_SCHEMA,
                        "nl_query": SPEND_REQUEST,
                        "sql_query": SPEND_SQL.replace(" ORDER BY SUM(o.total) DESC", ""),
                    },
                ]
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert [result["correct"] for result in body["results"]] == [True, False, False]
        assert body["summary"] == {"total": 3, "correct": 1, "incorrect": 1, "failed": 1}

    def test_empty_batch(self, client: TestClient) -> None:
        """Test that a batch needs at least one item."""
        response = client.post("/api/v1/verify/batch", json={"items": []})
        assert response.status_code == 400


class TestHealthEndpoints:
    """Tests for the health, readiness and liveness endpoints."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"api": True, "verifier": True}

    def test_ready(self, client: TestClient) -> None:
        response = client.get("/ready")
        assert response.json() == {
            "ready": True,
            "checks": {"verifier_loaded": True, "schema_loaded": True},
        }

    def test_live(self, client: TestClient) -> None:
        assert client.get("/live").json() == {"status": "ok"}

    def test_metrics(self, client: TestClient) -> None:
        """Test that verdict metrics are exported."""
        client.post(
            "/api/v1/verify",
            json={"nl_query": "all customers", "sql_query": "SELECT * FROM customers"},
        )
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "sql_verifier_verdicts_total" in response.text
