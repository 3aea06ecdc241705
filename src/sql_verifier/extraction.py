"""
SQL Extraction
==============

Pulls the SQL statement out of raw language-model output.
"""

import re

_FENCE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\n(.*?)(?:```|\Z)", re.DOTALL)
_LINE_STATEMENT = re.compile(r"(?ims)^[ \t]*(?:WITH|SELECT)\b.*")
_INLINE_STATEMENT = re.compile(r"(?s)\b(?:WITH|SELECT)\b.*")
_SQL_LANGUAGES = ("sql", "postgresql", "postgres", "sqlite", "mysql")


def extract_sql_from_response(text: str) -> str:
    """
    Extract SQL from model output.

    Handles ```sql fenced blocks (preferred over other fences), generic
    fences, and bare statements preceded by prose. Trailing semicolons and
    whitespace are removed.

    Args:
        text: Raw model response

    Returns:
        The SQL text; the stripped input when no statement is recognised
    """
    if not text:
        return ""
    text = text.strip()

    blocks = _FENCE.findall(text)
    if blocks:
        sql_blocks = [body for language, body in blocks if language.lower() in _SQL_LANGUAGES]
        chosen = sql_blocks[0] if sql_blocks else blocks[0][1]
        return _clean(chosen)

    match = _LINE_STATEMENT.search(text) or _INLINE_STATEMENT.search(text)
    if match is None:
        return _clean(text)
    statement = match.group(0)
    # Stop at the first blank line after the statement: what follows is prose
    statement = re.split(r"\n\s*\n", statement, maxsplit=1)[0]
    return _clean(statement)


def _clean(sql: str) -> str:
    sql = sql.strip()
    while sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql
