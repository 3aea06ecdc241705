"""
Heuristic Intent Extractor
==========================

Derives an expected shape from lexical cues in the request, mapped
against schema names:

- superlatives ("the most expensive") imply descending/ascending order
  with a single row
- "top N" / "bottom N" imply a ranked limit
- "average", "total", "how many", ... imply aggregate functions
- "per X" / "for each X" imply grouping by X
- comparatives with numbers and quoted values imply filter constraints
- "including those with no X" implies an outer join

Anything that cannot be mapped stays a wildcard. Cues that were seen but
not understood are recorded as ``IntentUnderspecified`` notes.
"""

from dataclasses import replace
from typing import Optional

from sql_verifier.facets.model import LimitSpec, SortDirection
from sql_verifier.facets.normalize import normalize_number
from sql_verifier.intent.base import IntentExtractor
from sql_verifier.intent.lexicon import Mention, SchemaLexicon, Token, tokenize
from sql_verifier.intent.shape import (
    AggregationIntent,
    FilterIntent,
    IntentMode,
    IntentShape,
    IntentUnderspecified,
    JoinIntent,
    OrderingIntent,
    ProjectionIntent,
    ValueConstraint,
)
from sql_verifier.parsing.bound import ColumnId
from sql_verifier.schema import SchemaModel

DESC, ASC = SortDirection.DESC, SortDirection.ASC

SUPERLATIVES = {
    "highest": DESC,
    "largest": DESC,
    "biggest": DESC,
    "greatest": DESC,
    "most": DESC,
    "best": DESC,
    "latest": DESC,
    "newest": DESC,
    "longest": DESC,
    "priciest": DESC,
    "lowest": ASC,
    "smallest": ASC,
    "least": ASC,
    "fewest": ASC,
    "cheapest": ASC,
    "earliest": ASC,
    "oldest": ASC,
    "shortest": ASC,
    "worst": ASC,
}

DIRECTION_WORDS = {
    "descending": DESC,
    "desc": DESC,
    "decreasing": DESC,
    "ascending": ASC,
    "asc": ASC,
    "increasing": ASC,
    "alphabetically": ASC,
    "alphabetical": ASC,
}

RANK_WORDS = {"top": DESC, "bottom": ASC, "first": None, "last": None}

AGGREGATE_PHRASES = [
    (("total", "number", "of"), "COUNT"),
    (("how", "many"), "COUNT"),
    (("number", "of"), "COUNT"),
    (("count", "of"), "COUNT"),
    (("average",), "AVG"),
    (("avg",), "AVG"),
    (("mean",), "AVG"),
    (("sum",), "SUM"),
    (("total",), "SUM"),
    (("maximum",), "MAX"),
    (("max",), "MAX"),
    (("minimum",), "MIN"),
    (("min",), "MIN"),
    (("count",), "COUNT"),
]

COMPARATIVES = [
    (("no", "less", "than"), ">="),
    (("no", "more", "than"), "<="),
    (("more", "than"), ">"),
    (("greater", "than"), ">"),
    (("higher", "than"), ">"),
    (("larger", "than"), ">"),
    (("bigger", "than"), ">"),
    (("at", "least"), ">="),
    (("minimum", "of"), ">="),
    (("less", "than"), "<"),
    (("fewer", "than"), "<"),
    (("lower", "than"), "<"),
    (("smaller", "than"), "<"),
    (("at", "most"), "<="),
    (("up", "to"), "<="),
    (("equal", "to"), "="),
    (("over",), ">"),
    (("above",), ">"),
    (("exceeding",), ">"),
    (("exceeds",), ">"),
    (("under",), "<"),
    (("below",), "<"),
    (("equals",), "="),
    (("exactly",), "="),
    ((">",), ">"),
    ((">=",), ">="),
    (("<",), "<"),
    (("<=",), "<="),
    (("=",), "="),
]

YEAR_PREPOSITIONS = {"in": None, "during": None, "since": ">=", "after": ">", "before": "<"}

GROUPING_PHRASES = [
    ("broken", "down", "by"),
    ("for", "each"),
    ("for", "every"),
    ("grouped", "by"),
    ("group", "by"),
    ("per",),
]

# "placed by", "sorted by", ... are not grouping cues
NON_GROUPING_BY = {
    "placed",
    "made",
    "sorted",
    "ordered",
    "ranked",
    "created",
    "written",
    "sold",
    "bought",
    "purchased",
    "owned",
    "managed",
    "order",
    "sort",
}

SORT_VERBS = {"sorted", "ordered", "ranked", "sort", "order", "arranged", "rank"}

LISTING_WORDS = {
    "list",
    "show",
    "display",
    "find",
    "get",
    "give",
    "return",
    "which",
    "retrieve",
    "fetch",
    "who",
    "enumerate",
}

PRESERVE_TRIGGERS = {"including", "include", "even", "regardless"}
NEGATIONS = {"no", "without", "none", "zero", "any"}
LIKE_WORDS = {"like", "containing", "contains", "starting", "ending", "matching", "includes"}
FILLER = {"the", "a", "an", "of", "their", "its", "each", "all", "by"}


class HeuristicIntentExtractor(IntentExtractor):
    """
    Maps lexical cues in the request onto the schema.

    Under-constrains rather than guesses: unmapped facets stay wildcards.
    """

    @property
    def name(self) -> str:
        return "heuristic"

    def extract(
        self,
        nl_query: str,
        schema: SchemaModel,
        reference: Optional[str] = None,
    ) -> IntentShape:
        return _Reading(nl_query, SchemaLexicon(schema)).shape()


class _Reading:
    """Cue extraction state for one request."""

    def __init__(self, text: str, lexicon: SchemaLexicon) -> None:
        self.lexicon = lexicon
        self.tokens: list[Token] = tokenize(text)
        self.mentions: list[Mention] = lexicon.find(self.tokens)
        self.consumed: set[int] = set()
        self.notes: list[IntentUnderspecified] = []

        self.preserve: set[str] = set()
        self.optional: set[str] = set()
        self.constraints: list[ValueConstraint] = []
        self.constraint_columns: set[ColumnId] = set()
        self.functions: set[str] = set()
        self.measures: set[ColumnId] = set()
        self.grouping_tables: set[str] = set()
        self.grouping_columns: set[ColumnId] = set()
        self.direction: Optional[SortDirection] = None
        self.key_columns: set[ColumnId] = set()
        self.limit: Optional[LimitSpec] = None
        self.extremum = False
        self.exact_cardinality = False

    # ------------------------------------------------------------------
    # Token helpers

    def word(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.tokens) and self.tokens[index].kind in ("word", "symbol"):
            return self.tokens[index].text
        return None

    def number(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.tokens) and self.tokens[index].kind == "number":
            return normalize_number(self.tokens[index].value)
        return None

    def matches(self, index: int, phrase: tuple[str, ...]) -> bool:
        return all(self.word(index + offset) == part for offset, part in enumerate(phrase))

    def free(self, start: int, end: int) -> bool:
        return not any(index in self.consumed for index in range(start, end))

    def consume(self, start: int, end: int) -> None:
        self.consumed.update(range(start, end))

    def mention_at(self, index: int) -> Optional[Mention]:
        for mention in self.mentions:
            if mention.start <= index < mention.end:
                return mention
        return None

    def mention_after(self, index: int, window: int = 3) -> Optional[Mention]:
        """First mention starting after ``index``, skipping filler words."""
        position = index + 1
        while position < len(self.tokens) and position <= index + window:
            mention = self.mention_at(position)
            if mention is not None:
                return mention
            if self.word(position) not in FILLER:
                return None
            position += 1
        return None

    def mention_before(self, index: int, window: int = 4) -> Optional[Mention]:
        candidates = [m for m in self.mentions if m.end <= index and m.end > index - window]
        return candidates[-1] if candidates else None

    def tables_before(self, index: int) -> list[str]:
        return [m.table for m in self.mentions if m.is_table and m.end <= index]

    @property
    def mentioned_tables(self) -> list[str]:
        tables = []
        for mention in self.mentions:
            if mention.is_table and mention.table not in tables:
                tables.append(mention.table)
        return tables

    def resolve(self, mention: Optional[Mention]) -> Optional[ColumnId]:
        """Pick the column a mention refers to, using nearby table mentions."""
        if mention is None or mention.is_table or not mention.columns:
            return None
        if len(mention.columns) == 1:
            return mention.columns[0]
        before = self.tables_before(mention.start)
        for table in reversed(before):
            matching = [c for c in mention.columns if c.table == table]
            if len(matching) == 1:
                return matching[0]
        mentioned = set(self.mentioned_tables)
        matching = [c for c in mention.columns if c.table in mentioned]
        if len(matching) == 1:
            return matching[0]
        return None

    @property
    def subject(self) -> Optional[str]:
        """The first entity the request talks about."""
        for mention in self.mentions:
            if mention.is_table:
                return mention.table
            column = self.resolve(mention)
            if column is not None:
                return column.table
        return None

    def note(self, facet: str, reason: str) -> None:
        entry = IntentUnderspecified(facet, reason)
        if entry not in self.notes:
            self.notes.append(entry)

    # ------------------------------------------------------------------
    # Cues

    def read_preserve(self) -> None:
        for index, token in enumerate(self.tokens):
            if token.text in PRESERVE_TRIGGERS:
                window = [self.word(i) for i in range(index + 1, index + 7)]
                if not any(word in NEGATIONS for word in window):
                    continue
            elif not self.matches(index, ("with", "or", "without")):
                continue

            optional = None
            for position in range(index + 1, min(index + 9, len(self.tokens))):
                mention = self.mention_at(position)
                if mention is not None and mention.is_table:
                    optional = mention
                    break
            subjects = [
                table
                for table in self.tables_before(index)
                if optional is None or table != optional.table
            ]
            if subjects:
                self.preserve.add(subjects[0])
            else:
                self.note("from_joins", "rows to keep could not be mapped to a table")
            if optional is not None:
                self.optional.add(optional.table)
                self.consume(index, optional.end)
            else:
                self.consume(index, index + 1)

    def read_constraints(self) -> None:
        index = 0
        while index < len(self.tokens):
            if index in self.consumed:
                index += 1
                continue

            if self.word(index) == "between":
                low, high = self.number(index + 1), self.number(index + 3)
                if low is not None and high is not None and self.word(index + 2) == "and":
                    column = self._constraint_column(index, index + 4)
                    self._add_constraint(ValueConstraint(low, column, ">="))
                    self._add_constraint(ValueConstraint(high, column, "<="))
                    self.consume(index, index + 4)
                    index += 4
                    continue

            year_op = YEAR_PREPOSITIONS.get(self.word(index) or "", "")
            year = self.number(index + 1)
            if year_op != "" and year is not None and _is_year(year):
                self._add_constraint(ValueConstraint(year, None, year_op))
                self.consume(index, index + 2)
                index += 2
                continue

            matched = False
            for phrase, op in COMPARATIVES:
                if not self.matches(index, phrase):
                    continue
                value_index = index + len(phrase)
                value = self.number(value_index)
                if value is None:
                    continue
                column = self._constraint_column(index, value_index + 1)
                self._add_constraint(ValueConstraint(value, column, op))
                self.consume(index, value_index + 1)
                index = value_index + 1
                matched = True
                break
            if not matched:
                index += 1

        for token in self.tokens:
            if token.kind != "quoted" or token.index in self.consumed:
                continue
            column = self.resolve(self.mention_before(token.index, window=4))
            op = "="
            if any(self.word(i) in LIKE_WORDS for i in range(token.index - 3, token.index)):
                op = None
            self._add_constraint(ValueConstraint(token.value, column, op))
            self.consume(token.index, token.index + 1)

    def _constraint_column(self, start: int, end: int) -> Optional[ColumnId]:
        before = self.mention_before(start, window=4)
        if before is not None:
            return self.resolve(before)
        return self.resolve(self.mention_after(end - 1, window=2))

    def _add_constraint(self, constraint: ValueConstraint) -> None:
        if constraint not in self.constraints:
            self.constraints.append(constraint)
        if constraint.column is not None:
            self.constraint_columns.add(constraint.column)

    def read_ordering(self) -> None:
        for index, token in enumerate(self.tokens):
            if index in self.consumed:
                continue
            word = token.text if token.kind == "word" else None

            # "highest first", "newest first"
            if word in SUPERLATIVES and self.word(index + 1) == "first":
                self.direction = SUPERLATIVES[word]
                self.consume(index, index + 2)
            # "from highest to lowest"
            elif word in SUPERLATIVES and self.word(index + 1) == "to" and (
                self.word(index + 2) in SUPERLATIVES
            ):
                self.direction = SUPERLATIVES[word]
                self.consume(index, index + 3)
            elif word in ("high", "low") and self.matches(index + 1, ("to",)):
                self.direction = DESC if word == "high" else ASC
                self.consume(index, index + 3)
            elif word in DIRECTION_WORDS:
                self.direction = DIRECTION_WORDS[word]
                self.consume(index, index + 1)
            # "top 5", "first 10", "bottom 3 cheapest"
            elif word in RANK_WORDS and self.number(index + 1) is not None:
                count = _int(self.number(index + 1))
                if count is None:
                    continue
                self.limit = LimitSpec(count=count)
                direction = RANK_WORDS[word]
                end = index + 2
                after = self.word(end)
                if after in SUPERLATIVES and end not in self.consumed:
                    direction = SUPERLATIVES[after]
                    end += 1
                if direction is not None:
                    self.direction = direction
                self.consume(index, end)
            # "5 most expensive", "3 highest"
            elif (
                token.kind == "number"
                and self.word(index + 1) in SUPERLATIVES
                and (index + 1) not in self.consumed
            ):
                count = _int(self.number(index))
                if count is None:
                    continue
                self.limit = LimitSpec(count=count)
                self.direction = SUPERLATIVES[self.word(index + 1)]
                self.consume(index, index + 2)
            elif word == "top" and self.free(index, index + 1):
                self.note("sorting", "'top' without a count")
            # "sorted by price", "ordered by name"
            elif word in SORT_VERBS and self.word(index + 1) == "by":
                mention = self.mention_after(index + 1, window=3)
                column = self.resolve(mention)
                if column is not None:
                    self.key_columns.add(column)
                    self.consume(index, mention.end)
                else:
                    self.note("sorting", "ordering key could not be mapped to a column")
                    self.consume(index, index + 2)

            if word in ("single", "exactly") or self.matches(index, ("only", "one")):
                self.exact_cardinality = True

    def read_aggregates(self) -> None:
        for index in range(len(self.tokens)):
            if index in self.consumed:
                continue
            for phrase, function in AGGREGATE_PHRASES:
                if not self.matches(index, phrase):
                    continue
                if phrase == ("total",):
                    before = self.mention_before(index, window=1)
                    if before is not None and before.is_table:
                        # "order total" names a column
                        break
                end = index + len(phrase)
                self.functions.add(function)
                measure = self.resolve(self.mention_after(end - 1, window=3))
                if measure is None:
                    measure = self.resolve(self.mention_at(index))
                if measure is not None:
                    self.measures.add(measure)
                self.consume(index, end)
                break

    def read_grouping(self) -> None:
        for index in range(len(self.tokens)):
            if index in self.consumed:
                continue
            phrase = next((p for p in GROUPING_PHRASES if self.matches(index, p)), None)
            if phrase is None and self.functions:
                if self.word(index) == "by" and self.word(index - 1) not in NON_GROUPING_BY:
                    phrase = ("by",)
                elif self.word(index) == "each" and self.word(index - 1) != "for":
                    phrase = ("each",)
            if phrase is None:
                continue

            end = index + len(phrase)
            mention = self.mention_after(end - 1, window=3)
            if mention is None:
                if phrase != ("by",):
                    target = self.word(end) or "?"
                    self.note("aggregations", f"grouping target '{target}' not found in the schema")
                continue
            if mention.is_table:
                self.grouping_tables.add(mention.table)
            else:
                column = self.resolve(mention)
                if column is None:
                    self.note("aggregations", f"grouping column '{mention.phrase}' is ambiguous")
                else:
                    self.grouping_columns.add(column)
            self.consume(index, mention.end)

    def read_superlatives(self) -> None:
        explicit_grouping = bool(self.grouping_tables or self.grouping_columns)
        for index, token in enumerate(self.tokens):
            if index in self.consumed or token.text not in SUPERLATIVES:
                continue
            direction = SUPERLATIVES[token.text]
            following = self.mention_at(index + 1)
            subject = next(
                (t for t in self.tables_before(index) if following is None or t != following.table),
                None,
            )
            counts_rows = following is not None and following.is_table
            if token.text in ("most", "fewest", "least") and counts_rows:
                # "the most orders" counts rows of the following table
                self.functions.add("COUNT")

            if explicit_grouping and self.limit is None:
                # Extremum within each group
                self.functions.add("MAX" if direction is DESC else "MIN")
            else:
                if self.direction is None:
                    self.direction = direction
                if self.limit is None:
                    self.limit = LimitSpec(count=1)
                    self.extremum = True
                counted = self.functions - {"MAX", "MIN"}
                if counted and subject is not None and not explicit_grouping:
                    self.grouping_tables.add(subject)
            self.consume(index, index + 1)
            break

    # ------------------------------------------------------------------
    # Shape

    def shape(self) -> IntentShape:
        self.read_preserve()
        self.read_constraints()
        self.read_ordering()
        self.read_aggregates()
        self.read_grouping()
        self.read_superlatives()

        words = {token.text for token in self.tokens if token.kind == "word"}
        listing = bool(words & LISTING_WORDS)
        grouped = bool(self.grouping_tables or self.grouping_columns)

        if self.functions or grouped:
            expects_aggregation: Optional[bool] = True
        elif listing and not self.extremum:
            expects_aggregation = False
        else:
            expects_aggregation = None

        subject = self.subject
        entities = set(self.grouping_tables)
        if subject is not None and (listing or self.extremum) and not (
            self.functions and not grouped
        ):
            entities.add(subject)

        projected = set()
        for mention in self.mentions:
            if mention.is_table or not self.free(mention.start, mention.end):
                continue
            column = self.resolve(mention)
            if column is not None:
                projected.add(column)

        tables = set(self.mentioned_tables) | self.grouping_tables | self.preserve | self.optional
        for column in projected | self.measures | self.constraint_columns | self.key_columns:
            tables.add(column.table)
        for column in self.grouping_columns:
            tables.add(column.table)
        if not tables:
            self.note("from_joins", "no table or column of the schema is mentioned")

        ordering = OrderingIntent(
            direction=self.direction,
            key_columns=frozenset(self.key_columns) or None,
            limit=self.limit,
            extremum=self.extremum,
            exact_cardinality=self.exact_cardinality and self.limit is not None,
        )
        ordering = replace(ordering, required=ordering.constrained)

        return IntentShape(
            mode=IntentMode.HEURISTIC,
            projection=ProjectionIntent(
                required=False,
                columns=frozenset(projected) or None,
                entities=frozenset(entities) or None,
            ),
            joins=JoinIntent(
                required=len(tables) > 1 or bool(self.preserve),
                tables=frozenset(tables) or None,
                preserve=frozenset(self.preserve),
            ),
            filters=FilterIntent(
                required=bool(self.constraints),
                constraints=tuple(self.constraints) or None,
            ),
            aggregation=AggregationIntent(
                required=expects_aggregation is not None,
                expects_aggregation=expects_aggregation,
                functions=frozenset(self.functions) or None,
                grouping_tables=frozenset(self.grouping_tables) or None,
                grouping_columns=frozenset(self.grouping_columns) or None,
                measures=frozenset(self.measures) or None,
            ),
            ordering=ordering,
            notes=tuple(self.notes),
        )


def _int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _is_year(value: str) -> bool:
    number = _int(value)
    return number is not None and 1900 <= number <= 2099
