import re
from typing import List, Pattern, Tuple

from safequery.core.errors import QueryValidationError


# -----------------------------------------------------------------------------
# VALIDATOR MODULE
# Purpose: reject every statement that is not a single read-only SELECT before
# any other component sees the text.
# Denylist + pattern heuristics only; there is no SQL parser behind this.
# -----------------------------------------------------------------------------

MAX_QUERY_LENGTH = 10000

# fmt: off
FORBIDDEN_KEYWORDS: Tuple[str, ...] = (
    "insert", "update", "delete", "drop", "create", "alter", "truncate",
    "grant", "revoke", "exec", "execute", "call", "declare", "set",
    "use", "backup", "restore", "shutdown", "xp_", "sp_", "fn_",
    "openrowset", "opendatasource", "bulk", "into", "outfile",
    "dumpfile", "load_file", "pg_", "mysql",
    "performance_schema", "sys",
)
# fmt: on

# Matched against the raw text, not the lower-cased copy
INJECTION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r";\s*(drop|delete|update|insert|create|alter)", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"/\*.*\*/"),
    re.compile(r"--\s"),
    re.compile(r"#"),
    re.compile(r"xp_cmdshell", re.IGNORECASE),
    re.compile(r"sp_executesql", re.IGNORECASE),
)

_KEYWORD_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    (keyword, re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE))
    for keyword in FORBIDDEN_KEYWORDS
]


class SQLValidator:
    """Lexical safety gate for caller-supplied SQL."""

    def __init__(self, max_query_length: int = MAX_QUERY_LENGTH):
        self.max_query_length = max_query_length

    def validate(self, sql: str) -> None:
        """
        Check a statement against every safety rule, in order.

        Args:
            sql: Raw statement text as supplied by the caller.

        Raises:
            QueryValidationError: on the first rule the statement breaks. The
                message names the rule and is shown to the caller verbatim.
        """
        normalized = sql.strip().lower()

        if not normalized.startswith("select"):
            raise QueryValidationError("Only SELECT statements are allowed")

        for keyword, pattern in _KEYWORD_PATTERNS:
            if pattern.search(normalized):
                raise QueryValidationError(f"Forbidden keyword detected: {keyword}")

        for pattern in INJECTION_PATTERNS:
            if pattern.search(sql):
                raise QueryValidationError("Potential SQL injection detected")

        if len(sql) > self.max_query_length:
            raise QueryValidationError("Query too long")

        if sql.count("(") != sql.count(")"):
            raise QueryValidationError("Unbalanced parentheses in query")


_default_validator = SQLValidator()


def validate_query(sql: str) -> None:
    """Validate with the default limits. See SQLValidator.validate."""
    _default_validator.validate(sql)
