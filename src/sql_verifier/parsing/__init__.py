"""SQL parsing and schema binding."""

from sql_verifier.parsing.binder import Binder
from sql_verifier.parsing.bound import BoundColumn, BoundQuery, ColumnId, Scope, Source
from sql_verifier.parsing.parser import parse_sql

__all__ = [
    "Binder",
    "BoundColumn",
    "BoundQuery",
    "ColumnId",
    "Scope",
    "Source",
    "parse_sql",
]
