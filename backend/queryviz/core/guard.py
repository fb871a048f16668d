# queryviz/core/guard.py
"""
Read-only guard for caller-supplied SQL.

Pure text validation/transformation: nothing here touches an engine.
Token-level work (limit splicing, clause counting) goes through the sqlglot
tokenizer so string literals and parenthesised subqueries are respected.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from queryviz.core.errors import GuardRejected

logger = logging.getLogger("queryviz.guard")

DIALECT = "duckdb"
MAX_JOINS = 3
MAX_SELECTS = 3

FORBIDDEN_KEYWORDS = [
    # data-mutating
    "INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT",
    # schema-mutating
    "DROP", "CREATE", "ALTER", "TRUNCATE",
    # privileges
    "GRANT", "REVOKE",
    # execution
    "EXEC", "EXECUTE", "CALL",
    # engine administration (duckdb)
    "PRAGMA", "ATTACH", "DETACH", "COPY", "EXPORT", "IMPORT",
    "INSTALL", "LOAD", "SET", "RESET", "VACUUM", "CHECKPOINT",
]

_KEYWORD_RES = [(kw, re.compile(rf"\b{kw}\b", re.IGNORECASE)) for kw in FORBIDDEN_KEYWORDS]

FORBIDDEN_PATTERNS = [
    (re.compile(r"--"), "SQL comments (--) are not allowed"),
    (re.compile(r"/\*"), "SQL comments (/* */) are not allowed"),
    (re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE), "UNION SELECT is not allowed"),
    (re.compile(r"\bINTO\s+(OUTFILE|DUMPFILE)\b", re.IGNORECASE), "File writes are not allowed"),
    (re.compile(r"\bLOAD_FILE\b", re.IGNORECASE), "File reads are not allowed"),
    (re.compile(r"\b(read_csv\w*|read_parquet|read_json\w*|parquet_scan|read_text|read_blob|glob)\s*\(",
                re.IGNORECASE), "Direct file reads are not allowed"),
    (re.compile(r"\bxp_cmdshell\b", re.IGNORECASE), "Command execution is not allowed"),
    (re.compile(r"\b(pg_sleep|sleep|benchmark)\s*\(", re.IGNORECASE), "Timing functions are not allowed"),
    (re.compile(r"\bWAITFOR\s+DELAY\b", re.IGNORECASE), "Timing functions are not allowed"),
]


def strip_terminator(sql: str) -> tuple[str, bool]:
    """Trim whitespace and trailing semicolons. Returns (text, had_terminator)."""
    text = (sql or "").strip()
    had = text.endswith(";")
    while text.endswith(";"):
        text = text[:-1].rstrip()
    return text, had


def _tokenize(sql: str) -> List[Token]:
    try:
        return sqlglot.tokenize(sql, read=DIALECT)
    except TokenError as e:
        raise GuardRejected(f"Query could not be parsed: {e}. Check quoting and parentheses.") from e


def _top_level(tokens: List[Token]):
    """Yield (index, token) for tokens at parenthesis depth 0."""
    depth = 0
    for i, tok in enumerate(tokens):
        if tok.token_type == TokenType.L_PAREN:
            depth += 1
        elif tok.token_type == TokenType.R_PAREN:
            depth = max(depth - 1, 0)
        elif depth == 0:
            yield i, tok


def _find_limit(tokens: List[Token]) -> Optional[int]:
    last = None
    for i, tok in _top_level(tokens):
        if tok.token_type == TokenType.LIMIT:
            last = i
    return last


def top_level_limit(sql: str) -> Optional[int]:
    """Numeric value of the outermost LIMIT, or None when absent/non-numeric."""
    text, _ = strip_terminator(sql)
    tokens = _tokenize(text)
    idx = _find_limit(tokens)
    if idx is None or idx + 1 >= len(tokens):
        return None
    nxt = tokens[idx + 1]
    if nxt.token_type == TokenType.NUMBER and nxt.text.isdigit():
        return int(nxt.text)
    return None


def strip_limit(sql: str) -> str:
    """Drop the terminator and the outermost trailing LIMIT [OFFSET] clause."""
    text, _ = strip_terminator(sql)
    tokens = _tokenize(text)
    idx = _find_limit(tokens)
    if idx is None:
        return text
    return text[: tokens[idx].start].rstrip()


def validate_read_only(sql: str) -> None:
    text, _ = strip_terminator(sql)
    if not text:
        raise GuardRejected("Query is empty. Provide a single SELECT statement.")

    for kw, rx in _KEYWORD_RES:
        if rx.search(text):
            raise GuardRejected(
                f"Forbidden keyword detected: {kw}. Only SELECT queries are allowed. "
                "Keywords also match inside string literals; to filter on a value such as "
                f"'{kw.capitalize()}' use a pattern that avoids the whole word, e.g. "
                f"ILIKE '{kw[:-1].lower()}_'.",
                details={"keyword": kw},
            )

    for rx, reason in FORBIDDEN_PATTERNS:
        if rx.search(text):
            raise GuardRejected(f"Forbidden SQL pattern detected: {reason}. Only a single SELECT query is allowed.")

    # semicolons inside string literals are STRING tokens, not terminators
    if any(t.token_type == TokenType.SEMICOLON for t in _tokenize(text)):
        raise GuardRejected(
            "Forbidden SQL pattern detected: multiple statements are not allowed. Send one SELECT per call."
        )

    head = text.lstrip("( \t\r\n").upper()
    if not (head.startswith("SELECT") or head.startswith("WITH")):
        raise GuardRejected("Query must start with SELECT or WITH (for CTEs).")


def assess_complexity(sql: str) -> None:
    tokens = _tokenize(strip_terminator(sql)[0])
    joins = sum(1 for t in tokens if t.token_type == TokenType.JOIN)
    if joins > MAX_JOINS:
        raise GuardRejected(f"Too many JOINs ({joins}, max {MAX_JOINS}). Simplify the query or pre-aggregate in a CTE.")
    selects = sum(1 for t in tokens if t.token_type == TokenType.SELECT)
    if selects > MAX_SELECTS:
        raise GuardRejected(
            f"Too many nested SELECT blocks ({selects}, max {MAX_SELECTS}). Flatten subqueries where possible."
        )


def ensure_limit(sql: str, max_limit: int = 500) -> str:
    """Cap (or append) the outermost LIMIT so the result has at most `max_limit` rows."""
    text, had_terminator = strip_terminator(sql)
    tokens = _tokenize(text)
    idx = _find_limit(tokens)

    if idx is None:
        text = f"{text} LIMIT {max_limit}"
    else:
        limit_tok = tokens[idx]
        nxt = tokens[idx + 1] if idx + 1 < len(tokens) else None
        if nxt is not None and nxt.token_type == TokenType.NUMBER and nxt.text.isdigit():
            if int(nxt.text) > max_limit:
                text = text[: nxt.start] + str(max_limit) + text[nxt.start + len(nxt.text):]
        else:
            # LIMIT ALL / LIMIT <expr>: replace everything up to OFFSET (or the end)
            end = len(text)
            for j, tok in _top_level(tokens):
                if j > idx and tok.token_type == TokenType.OFFSET:
                    end = tok.start
                    break
            tail = text[end:]
            text = text[: limit_tok.start] + f"LIMIT {max_limit}" + (f" {tail.lstrip()}" if tail.strip() else "")

    return f"{text};" if had_terminator else text


def guard_sql(sql: str, table_name: str | None = None, max_limit: int = 500) -> str:
    """Validate `sql` as a single bounded read query. Raises GuardRejected."""
    try:
        validate_read_only(sql)
        assess_complexity(sql)
    except GuardRejected as e:
        logger.info("guard rejected query for %s: %s", table_name or "-", e.message)
        raise
    return ensure_limit(sql, max_limit)
