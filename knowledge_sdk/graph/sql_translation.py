# knowledge_sdk/graph/sql_translation.py
# SPDX-License-Identifier: Apache-2.0
"""
SQL `WHERE` → openCypher `WHERE` translation.

Two stages:

1. Structural: parse the filter with sqlglot as the WHERE clause of
   `SELECT * FROM BLAH AS n`, attach every unqualified column to the query
   namespace and render it back to SQL.
2. Dialect: a small tokenizing transformer turns the rendered SQL into
   Cypher syntax. It strips double-quote identifier quoting and rewrites
   `IN (a, b)` lists into `IN [a,b]`. String literals pass through untouched.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from knowledge_sdk.graph.graph_base import OBJECTID_PROPERTY, FilterParseError

LOG = logging.getLogger(__name__)

SQL_DIALECT = "postgres"
PLACEHOLDER_SELECT = "SELECT * FROM BLAH AS {ns} WHERE "

_OBJECTID_RE = re.compile(r"\bobjectid\b", re.IGNORECASE)
_ALWAYS_TRUE = {"1=1", "(1=1)", "true"}


def is_trivial_filter(where: Optional[str]) -> bool:
    if where is None:
        return True
    compact = "".join(where.split()).lower()
    return compact == "" or compact in _ALWAYS_TRUE


def normalize_objectid(where: str) -> str:
    """Lower-case any spelling of OBJECTID; the graph property is `objectid`."""
    return _OBJECTID_RE.sub(OBJECTID_PROPERTY, where)


def object_ids_filter(object_ids: Sequence[int]) -> str:
    return f"{OBJECTID_PROPERTY} in ({','.join(str(i) for i in object_ids)})"


def qualify_where(where: str, namespace: str = "n") -> str:
    """Parse `where` and re-render it with every bare column qualified by `namespace`."""
    sql = PLACEHOLDER_SELECT.format(ns=namespace) + where
    try:
        tree = sqlglot.parse_one(sql, read=SQL_DIALECT)
    except (ParseError, TokenError) as e:
        raise FilterParseError(f"invalid where clause: {where}") from e

    clause = tree.args.get("where") if isinstance(tree, exp.Select) else None
    if clause is None:
        raise FilterParseError(f"invalid where clause: {where}")

    for column in clause.find_all(exp.Column):
        if not column.table:
            column.set("table", exp.to_identifier(namespace))
    return clause.this.sql(dialect=SQL_DIALECT)


# =============================================================================
# Dialect transformer
# =============================================================================

_TOKEN_RE = re.compile(
    r"""
    (?P<string>'(?:[^']|'')*')
  | (?P<quoted>"(?:[^"]|"")*")
  | (?P<word>[A-Za-z_][A-Za-z0-9_$]*)
  | (?P<space>\s+)
  | (?P<open>\()
  | (?P<close>\))
  | (?P<comma>,)
  | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

Token = Tuple[str, str]


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    for m in _TOKEN_RE.finditer(text):
        kind = m.lastgroup or "other"
        value = m.group()
        if kind == "other" and value in "'\"":
            raise FilterParseError("unterminated quoted text in where clause", details={"offset": m.start()})
        tokens.append((kind, value))
    return tokens


def _skip_space(tokens: Sequence[Token], i: int) -> int:
    while i < len(tokens) and tokens[i][0] == "space":
        i += 1
    return i


def _split_list(tokens: Sequence[Token], start: int) -> Tuple[List[List[Token]], int]:
    """
    Split the parenthesized list opening at `tokens[start]` on top-level commas.

    Returns the element token runs and the index just past the closing paren.
    """
    items: List[List[Token]] = [[]]
    depth = 0
    i = start + 1
    while i < len(tokens):
        kind, _ = tokens[i]
        if kind == "open":
            depth += 1
        elif kind == "close":
            if depth == 0:
                return items, i + 1
            depth -= 1
        elif kind == "comma" and depth == 0:
            items.append([])
            i += 1
            continue
        items[-1].append(tokens[i])
        i += 1
    raise FilterParseError("unbalanced parentheses in IN list")


def _render(tokens: Iterable[Token]) -> str:
    tokens = list(tokens)
    out: List[str] = []
    i = 0
    while i < len(tokens):
        kind, value = tokens[i]
        if kind == "quoted":
            out.append(value[1:-1].replace('""', '"'))
        elif kind == "word" and value.upper() == "IN":
            j = _skip_space(tokens, i + 1)
            if j < len(tokens) and tokens[j][0] == "open":
                items, i = _split_list(tokens, j)
                rendered = [_render(item).strip() for item in items]
                out.append("IN [" + ",".join(r for r in rendered if r) + "]")
                continue
            out.append(value)
        else:
            out.append(value)
        i += 1
    return "".join(out)


def sql_where_to_cypher(sql: str) -> str:
    """Rewrite a rendered SQL boolean expression into Cypher syntax."""
    return _render(tokenize(sql))


def translate_where(
    where: Optional[str],
    object_ids: Optional[Sequence[int]] = None,
    namespace: str = "n",
) -> Optional[str]:
    """
    Full filter translation. Object ids win over `where`; a trivial filter
    yields None.
    """
    if object_ids:
        text = object_ids_filter(object_ids)
    elif not is_trivial_filter(where):
        text = normalize_objectid(where or "")
    else:
        return None
    cypher = sql_where_to_cypher(qualify_where(text, namespace))
    LOG.debug("translated where clause: %s", cypher)
    return cypher


__all__ = [
    "is_trivial_filter",
    "normalize_objectid",
    "object_ids_filter",
    "qualify_where",
    "tokenize",
    "sql_where_to_cypher",
    "translate_where",
]
