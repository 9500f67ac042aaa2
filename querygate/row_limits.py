"""Row limit enforcement at the query layer.

The caller's limit is pushed into the statement's syntax tree and rendered back
in the engine's dialect (LIMIT, TOP or OFFSET ... FETCH, whatever the engine
speaks). One extra row is always requested so truncation can be reported
exactly instead of guessed from ``row_count == limit``. Whatever the rewrite
outcome, the executor also caps the cursor fetch, so a statement that could
not be rewritten still never materializes more than the plan allows.

The planned text is what the executor hands to SQLAlchemy ``text()``, so every
placeholder is rendered as a ``:name`` bind; see ``sql_validator.bind_name``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlglot import exp
from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import SqlglotError

from .sql_validator import bind_name, is_read_only, parameter_nodes, parse_statement

logger = logging.getLogger(__name__)


@dataclass
class LimitPlan:
    """How to run a statement so that at most ``limit`` rows reach the caller.

    ``max_rows`` is the number of rows to pull from the cursor, ``skip_rows`` the
    number of leading rows to discard client-side before the page starts.
    """
    sql: str
    limit: int
    offset: int
    skip_rows: int
    rewritten: bool

    @property
    def max_rows(self) -> int:
        return self.skip_rows + self.limit + 1


def _row_count(limit: Optional[exp.Expression]) -> Optional[int]:
    """Integer row count of an existing LIMIT, TOP or FETCH clause."""
    if isinstance(limit, exp.Limit):
        count = limit.expression
    elif isinstance(limit, exp.Fetch):
        count = limit.args.get("count")
    else:
        return None
    if isinstance(count, exp.Literal) and count.is_int:
        return int(count.this)
    return None


def _set_row_count(limit: exp.Expression, count: int) -> None:
    key = "expression" if isinstance(limit, exp.Limit) else "count"
    limit.set(key, exp.Literal.number(count))


def _bind_placeholders(tree: exp.Expression) -> bool:
    """Render every placeholder as ``:name`` regardless of the dialect's own style."""
    found = False
    for node, name in list(parameter_nodes(tree)):
        node.replace(exp.var(f":{bind_name(name)}"))
        found = True
    return found


def plan_row_limit(sql: str, limit: int, offset: int = 0, dialect: Optional[str] = None) -> LimitPlan:
    """Build the execution plan enforcing ``limit`` (and ``offset``) for one statement.

    Only read-only statements whose root is a SELECT or a set operation are
    rewritten. Anything else runs unchanged and is capped at fetch time.

    Args:
        sql: Statement text, already validated
        limit: Effective row limit, at least 1
        offset: Number of leading rows to skip
        dialect: sqlglot dialect of the engine, generic when None

    Returns:
        LimitPlan describing the SQL to run and the cursor fetch bounds
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must not be negative, got {offset}")
    Dialect.get_or_raise(dialect)

    try:
        tree = parse_statement(sql, dialect)
    except SqlglotError:
        return LimitPlan(sql=sql, limit=limit, offset=offset, skip_rows=offset, rewritten=False)

    skip_rows = offset
    rewritten = False
    if isinstance(tree, (exp.Select, exp.SetOperation)) and is_read_only(tree):
        existing = tree.args.get("limit")
        if existing is None and tree.args.get("offset") is None:
            tree = tree.limit(limit + 1)
            if offset:
                tree = tree.offset(offset)
            skip_rows = 0
            rewritten = True
        else:
            # Shrink an existing integer limit; the page offset is then applied client-side
            needed = offset + limit + 1
            count = _row_count(existing)
            if count is not None and count > needed:
                tree = tree.copy()
                _set_row_count(tree.args["limit"], needed)
                rewritten = True

    if not _bind_placeholders(tree) and not rewritten:
        return LimitPlan(sql=sql, limit=limit, offset=offset, skip_rows=skip_rows, rewritten=False)

    if rewritten:
        logger.debug(f"Applied row limit {limit} (offset {offset}) in dialect {dialect or 'generic'}")
    return LimitPlan(sql=tree.sql(dialect=dialect), limit=limit, offset=offset,
                     skip_rows=skip_rows, rewritten=rewritten)
