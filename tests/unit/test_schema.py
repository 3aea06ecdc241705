"""
Unit Tests for the Schema Model
===============================

Tests for schema construction, lookups and foreign-key paths.
"""

import pytest

from sql_verifier import SchemaError, SchemaModel
from sql_verifier.schema import ForeignKey


class TestSchemaFromDict:
    """Tests for SchemaModel.from_dict."""

    def test_plain_column_list(self) -> None:
        """Test that the plain columns/types form is accepted."""
        schema = SchemaModel.from_dict(
            {"items": {"columns": ["id", "label"], "types": {"id": "INTEGER"}}}
        )
        table = schema.resolve_table("items")
        assert table is not None
        assert table.column_names == ["id", "label"]
        assert table.column("id").type == "INTEGER"
        assert table.column("label").type == "TEXT"

    def test_primary_key_is_not_nullable(self, schema_model: SchemaModel) -> None:
        """Test that primary key columns are NOT NULL."""
        customers = schema_model.resolve_table("customers")
        assert customers.primary_key == frozenset({"id"})
        assert customers.column("id").nullable is False
        assert customers.column("email").nullable is True

    def test_foreign_keys(self, schema_model: SchemaModel) -> None:
        """Test that foreign keys are read from the mapping form."""
        keys = {str(fk) for fk in schema_model.foreign_keys()}
        assert "orders.customer_id -> customers.id" in keys
        assert "orders.product_id -> products.id" in keys

    def test_case_insensitive_lookup(self, schema_model: SchemaModel) -> None:
        """Test that table and column lookups ignore case."""
        assert schema_model.resolve_table("CUSTOMERS").name == "customers"
        assert schema_model.resolve_column("Orders", "AMOUNT").name == "amount"
        assert "products" in schema_model
        assert "suppliers" not in schema_model

    def test_round_trip_preserves_keys(self, schema_model: SchemaModel) -> None:
        """Test that to_dict output rebuilds an equivalent schema."""
        rebuilt = SchemaModel.from_dict(schema_model.to_dict())
        assert rebuilt.table_names == schema_model.table_names
        assert {str(fk) for fk in rebuilt.foreign_keys()} == {
            str(fk) for fk in schema_model.foreign_keys()
        }


class TestSchemaValidation:
    """Tests for schema invariants."""

    def test_duplicate_column(self) -> None:
        """Test that duplicate column names are rejected."""
        with pytest.raises(SchemaError, match="Duplicate column"):
            SchemaModel.from_dict({"t": {"columns": ["id", "ID"]}})

    def test_unknown_primary_key(self) -> None:
        """Test that a primary key must name an existing column."""
        with pytest.raises(SchemaError, match="Primary key"):
            SchemaModel.from_dict({"t": {"columns": ["id"], "primary_key": ["key"]}})

    def test_foreign_key_to_unknown_table(self) -> None:
        """Test that a foreign key must target an existing table."""
        with pytest.raises(SchemaError, match="unknown table"):
            SchemaModel.from_dict(
                {"t": {"columns": ["id", "u_id"], "foreign_keys": {"u_id": "u.id"}}}
            )

    def test_foreign_key_to_unknown_column(self) -> None:
        """Test that a foreign key must target an existing column."""
        with pytest.raises(SchemaError, match="unknown column"):
            SchemaModel.from_dict(
                {
                    "u": {"columns": ["id"]},
                    "t": {"columns": ["id", "u_id"], "foreign_keys": {"u_id": "u.key"}},
                }
            )

    def test_table_without_columns(self) -> None:
        """Test that every table needs a column list."""
        with pytest.raises(SchemaError):
            SchemaModel.from_dict({"t": {"types": {}}})

    def test_schema_error_is_value_error(self) -> None:
        """Test that schema errors can be handled as ValueError."""
        with pytest.raises(ValueError):
            SchemaModel.from_dict(["not", "a", "mapping"])


class TestForeignKeyPath:
    """Tests for foreign-key path search."""

    def test_direct_path(self, schema_model: SchemaModel) -> None:
        """Test a single-edge path."""
        path = schema_model.foreign_key_path("customers", "orders")
        assert path == [ForeignKey("orders", "customer_id", "customers", "id")]

    def test_transitive_path(self, schema_model: SchemaModel) -> None:
        """Test a path through an intermediate table."""
        path = schema_model.foreign_key_path("customers", "products")
        assert [str(fk) for fk in path] == [
            "orders.customer_id -> customers.id",
            "orders.product_id -> products.id",
        ]

    def test_same_table(self, schema_model: SchemaModel) -> None:
        """Test that a table is connected to itself by an empty path."""
        assert schema_model.foreign_key_path("orders", "orders") == []

    def test_no_path(self) -> None:
        """Test that unrelated tables have no path."""
        schema = SchemaModel.from_dict({"a": {"columns": ["id"]}, "b": {"columns": ["id"]}})
        assert schema.foreign_key_path("a", "b") is None

    def test_unknown_table(self, schema_model: SchemaModel) -> None:
        """Test that unknown tables have no path."""
        assert schema_model.foreign_key_path("customers", "suppliers") is None


class TestSchemaFromDDL:
    """Tests for SchemaModel.from_ddl."""

    def test_create_table_statements(self) -> None:
        """Test columns, keys and references from DDL."""
        schema = SchemaModel.from_ddl(
            """
            CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
            CREATE TABLE books (
                id INTEGER PRIMARY KEY,
                title TEXT,
                author_id INTEGER,
                FOREIGN KEY (author_id) REFERENCES authors (id)
            );
            INSERT INTO authors VALUES (1, 'Le Guin');
            """
        )
        assert schema.table_names == ["authors", "books"]
        assert schema.resolve_column("authors", "name").nullable is False
        assert schema.resolve_table("books").primary_key == frozenset({"id"})
        assert [str(fk) for fk in schema.foreign_keys()] == ["books.author_id -> authors.id"]

    def test_ddl_without_tables(self) -> None:
        """Test that DDL without CREATE TABLE is rejected."""
        with pytest.raises(SchemaError, match="no CREATE TABLE"):
            SchemaModel.from_ddl("SELECT 1")
