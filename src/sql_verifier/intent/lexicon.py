"""
Schema Lexicon
==============

Keyword matching of natural-language text against table and column names.

Each table and column is indexed under a few surface forms (singular,
plural, underscores as spaces) and phrases are matched longest first.
"""

import re
from dataclasses import dataclass
from typing import Optional

from sql_verifier.parsing.bound import ColumnId
from sql_verifier.schema import SchemaModel

_NUMBER_WORDS = {
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
    "seven": "7",
    "eight": "8",
    "nine": "9",
    "ten": "10",
    "twenty": "20",
    "hundred": "100",
}

_TOKEN = re.compile(
    r"(?P<quoted>(?<![\w])'[^']+'(?![\w])|\"[^\"]+\")"
    r"|(?P<number>\$?\d+(?:,\d{3})*(?:\.\d+)?%?)"
    r"|(?P<word>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<symbol>[<>=]=?|!=)"
)

_MAX_PHRASE = 3


@dataclass(frozen=True)
class Token:
    text: str
    kind: str  # "word", "number", "quoted" or "symbol"
    index: int

    @property
    def value(self) -> str:
        if self.kind == "quoted":
            return self.text[1:-1]
        if self.kind == "number":
            return self.text.strip("$%").replace(",", "")
        return self.text


@dataclass(frozen=True)
class Mention:
    """A run of tokens naming a table or columns."""

    start: int
    end: int  # exclusive
    phrase: str
    table: Optional[str] = None
    columns: tuple[ColumnId, ...] = ()

    @property
    def is_table(self) -> bool:
        return self.table is not None


def tokenize(text: str) -> list[Token]:
    """Split a request into lower-cased word, number, quoted and symbol tokens."""
    # Possessives: "customer's" -> "customer", "customers'" -> "customers"
    text = re.sub(r"(\w)'s\b", r"\1", text)
    text = re.sub(r"(\ws)'(?=\s|$)", r"\1", text)

    tokens = []
    for match in _TOKEN.finditer(text):
        kind = match.lastgroup
        raw = match.group(kind)
        if kind == "word":
            raw = raw.lower()
            if raw in _NUMBER_WORDS:
                raw, kind = _NUMBER_WORDS[raw], "number"
        tokens.append(Token(text=raw, kind=kind, index=len(tokens)))
    return tokens


def singular(word: str) -> str:
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"
    if word.endswith(("sses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 3:
        return word[:-1]
    return word


def plural(word: str) -> str:
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


def surface_forms(name: str) -> set[str]:
    """Phrases that may refer to a schema identifier."""
    base = name.lower().replace("_", " ").strip()
    words = base.split()
    if not words:
        return set()
    head, last = words[:-1], words[-1]
    forms = set()
    for variant in {last, singular(last), plural(singular(last))}:
        forms.add(" ".join(head + [variant]))
    return forms


class SchemaLexicon:
    """Index of schema names by surface form."""

    def __init__(self, schema: SchemaModel) -> None:
        self.schema = schema
        self.tables: dict[str, str] = {}
        self.columns: dict[str, list[ColumnId]] = {}

        for table in schema.tables:
            for form in surface_forms(table.name):
                self.tables.setdefault(form, table.name)
            for column in table.columns:
                column_id = ColumnId(table.name, column.name)
                for form in surface_forms(column.name):
                    self.columns.setdefault(form, []).append(column_id)

    def find(self, tokens: list[Token]) -> list[Mention]:
        """Longest-first, left-to-right matching of schema names."""
        mentions = []
        index = 0
        while index < len(tokens):
            mention = None
            for size in range(min(_MAX_PHRASE, len(tokens) - index), 0, -1):
                window = tokens[index : index + size]
                if any(token.kind != "word" for token in window):
                    continue
                phrase = " ".join(token.text for token in window)
                if phrase in self.tables:
                    mention = Mention(index, index + size, phrase, table=self.tables[phrase])
                elif phrase in self.columns:
                    mention = Mention(
                        index, index + size, phrase, columns=tuple(self.columns[phrase])
                    )
                if mention is not None:
                    break
            if mention is None:
                index += 1
            else:
                mentions.append(mention)
                index = mention.end
        return mentions
