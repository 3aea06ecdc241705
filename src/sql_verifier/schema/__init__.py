"""
Schema Module
=============

Read-only schema metadata consumed by the binder and intent extractors.
"""

from sql_verifier.schema.model import Column, ForeignKey, SchemaModel, Table

# Default schema for demos, the HTTP wrapper and benchmarks
SAMPLE_SCHEMA = {
    "customers": {
        "columns": ["id", "name", "email", "created_at", "tier", "country"],
        "types": {
            "id": "INTEGER",
            "name": "TEXT",
            "email": "TEXT",
            "created_at": "DATE",
            "tier": "TEXT",
            "country": "TEXT",
        },
        "primary_key": ["id"],
    },
    "orders": {
        "columns": ["id", "customer_id", "product_id", "amount", "order_date", "status"],
        "types": {
            "id": "INTEGER",
            "customer_id": "INTEGER",
            "product_id": "INTEGER",
            "amount": "DECIMAL",
            "order_date": "DATE",
            "status": "TEXT",
        },
        "primary_key": ["id"],
        "foreign_keys": {
            "customer_id": "customers.id",
            "product_id": "products.id",
        },
    },
    "products": {
        "columns": ["id", "name", "price", "category", "stock"],
        "types": {
            "id": "INTEGER",
            "name": "TEXT",
            "price": "DECIMAL",
            "category": "TEXT",
            "stock": "INTEGER",
        },
        "primary_key": ["id"],
    },
}

__all__ = [
    "Column",
    "ForeignKey",
    "SchemaModel",
    "Table",
    "SAMPLE_SCHEMA",
]
