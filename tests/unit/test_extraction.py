"""
Unit Tests for SQL Extraction
=============================

Tests for pulling SQL out of raw model output.
"""

import pytest

from sql_verifier import extract_sql_from_response


class TestExtractSQL:
    """Tests for extract_sql_from_response."""

    def test_sql_fence(self) -> None:
        """Test extraction from a ```sql block surrounded by prose."""
        text = "Here is the query:\n```sql\nSELECT * FROM customers;\n```\nHope this helps!"
        assert extract_sql_from_response(text) == "SELECT * FROM customers"

    def test_generic_fence(self) -> None:
        """Test extraction from an unlabelled fence."""
        assert extract_sql_from_response("```\nSELECT 1\n```") == "SELECT 1"

    def test_sql_fence_preferred(self) -> None:
        """Test that a sql block wins over other fenced blocks."""
        text = "```python\nprint(1)\n```\nand\n```sql\nSELECT 2\n```"
        assert extract_sql_from_response(text) == "SELECT 2"

    def test_unclosed_fence(self) -> None:
        """Test that a truncated response still yields its SQL."""
        assert extract_sql_from_response("```sql\nSELECT name FROM products") == (
            "SELECT name FROM products"
        )

    def test_statement_after_prose(self) -> None:
        """Test a bare statement on its own line, followed by more prose."""
        text = (
            "The answer is:\n"
            "SELECT name FROM customers\n"
            "WHERE tier = 'gold';\n"
            "\n"
            "This returns gold customers."
        )
        assert extract_sql_from_response(text) == (
            "SELECT name FROM customers\nWHERE tier = 'gold'"
        )

    def test_inline_statement(self) -> None:
        """Test a statement embedded in a sentence."""
        assert extract_sql_from_response("You can run SELECT 1") == "SELECT 1"

    def test_with_clause(self) -> None:
        """Test that CTE queries are recognised."""
        text = "Query:\nWITH t AS (SELECT 1 AS x) SELECT x FROM t"
        assert extract_sql_from_response(text) == "WITH t AS (SELECT 1 AS x) SELECT x FROM t"

    @pytest.mark.parametrize("text,expected", [("", ""), ("  no sql here  ", "no sql here")])
    def test_no_statement(self, text: str, expected: str) -> None:
        """Test that text without SQL is returned stripped."""
        assert extract_sql_from_response(text) == expected
