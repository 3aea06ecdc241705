"""
SQL Parser
==========

Turns query text into a sqlglot syntax tree.
"""

import re
import sys
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, SqlglotError

from sql_verifier.errors import SQLSyntaxError, TooComplexError
from sql_verifier.parsing.tree import QUERY_TYPES

_TOKEN_POSITION = re.compile(r"[Ll]ine (\d+), [Cc]ol(?:umn)?:? (\d+)")


def _from_parse_error(error: ParseError) -> SQLSyntaxError:
    if error.errors:
        first = error.errors[0]
        return SQLSyntaxError(
            first.get("description") or str(error),
            line=first.get("line"),
            column=first.get("col"),
            token=(first.get("highlight") or None),
        )
    return SQLSyntaxError(str(error))


def _from_generic_error(error: SqlglotError) -> SQLSyntaxError:
    message = str(error).splitlines()[0] if str(error) else type(error).__name__
    match = _TOKEN_POSITION.search(str(error))
    if match:
        return SQLSyntaxError(message, line=int(match.group(1)), column=int(match.group(2)))
    return SQLSyntaxError(message)


def _leading_word(sql: str) -> Optional[str]:
    match = re.match(r"\s*(\S+)", sql)
    return match.group(1) if match else None


def parse_sql(sql: str, dialect: Optional[str] = None) -> exp.Expression:
    """
    Parse a single query.

    Args:
        sql: Query text; trailing semicolons are ignored
        dialect: sqlglot dialect name (mysql, postgres, sqlite, ...)

    Returns:
        The root query expression (a SELECT or a set operation)

    Raises:
        SQLSyntaxError: The text is empty, unparseable, holds several
            statements, or is not a query
        TooComplexError: The parser ran out of recursion depth
    """
    text = (sql or "").strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()
    if not text:
        raise SQLSyntaxError("empty query", line=1, column=1)

    try:
        statements = [s for s in sqlglot.parse(text, read=dialect) if s is not None]
    except ParseError as e:
        raise _from_parse_error(e) from e
    except SqlglotError as e:
        raise _from_generic_error(e) from e
    except RecursionError as e:
        raise TooComplexError("parser recursion depth", limit=sys.getrecursionlimit()) from e

    if not statements:
        raise SQLSyntaxError("empty query", line=1, column=1)
    if len(statements) > 1:
        raise SQLSyntaxError(
            f"expected a single statement, found {len(statements)}",
            token=";",
        )

    root = statements[0]
    while isinstance(root, exp.Subquery):
        root = root.this
    if not isinstance(root, QUERY_TYPES):
        raise SQLSyntaxError(
            f"expected a SELECT query, found {root.key.upper()}",
            line=1,
            column=1,
            token=_leading_word(text),
        )
    return root
