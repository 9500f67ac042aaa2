"""SQL validation on the sqlglot syntax tree.

The text is parsed with the dialect of the target engine (or sqlglot's generic
dialect when none is known), so keywords inside string literals, quoted
identifiers and comments never influence the result. The validator is pure:
the same text always produces the same result and no state is shared between
calls.
"""

import logging
from typing import Iterator, List, Optional, Set, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import ParseError, SqlglotError, TokenError
from sqlglot.tokens import TokenType

from .models import ValidationIssue, ValidationResult, ValidationWarning

logger = logging.getLogger(__name__)


# Engine kind -> sqlglot dialect
DIALECT_MAP = {
    "sqlite": "sqlite",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mssql": "tsql",
    "oracle": "oracle",
    "clickhouse": "clickhouse",
    "snowflake": "snowflake",
}

# Statement roots that can only ever read
READ_ONLY_ROOTS = (exp.Query, exp.Values)

# Nodes that write data, change the catalog or administer the engine wherever they appear
MUTATING_EXPRESSIONS = (
    exp.Insert, exp.Update, exp.Delete, exp.Merge,
    exp.Create, exp.Drop, exp.Alter, exp.TruncateTable,
    exp.Command, exp.Copy, exp.LoadData, exp.Set, exp.Pragma, exp.Use,
    exp.Transaction, exp.Commit, exp.Rollback,
    exp.Grant, exp.Revoke, exp.Kill, exp.Refresh, exp.Cache, exp.Uncache,
    exp.Declare, exp.Analyze,
)

STATEMENT_TYPES = {
    exp.Insert: "INSERT",
    exp.Update: "UPDATE",
    exp.Delete: "DELETE",
    exp.Merge: "MERGE",
    exp.Create: "CREATE",
    exp.Drop: "DROP",
    exp.Alter: "ALTER",
    exp.TruncateTable: "TRUNCATE",
    exp.Copy: "COPY",
    exp.Set: "SET",
    exp.Pragma: "PRAGMA",
    exp.Use: "USE",
    exp.Transaction: "BEGIN",
    exp.Commit: "COMMIT",
    exp.Rollback: "ROLLBACK",
    exp.Grant: "GRANT",
    exp.Revoke: "REVOKE",
    exp.Describe: "DESCRIBE",
    exp.Values: "VALUES",
}

# Functions with side effects on the server, its files or other sessions
SIDE_EFFECT_FUNCTIONS = frozenset({
    "PG_TERMINATE_BACKEND", "PG_CANCEL_BACKEND", "PG_RELOAD_CONF", "PG_ROTATE_LOGFILE",
    "SET_CONFIG", "NEXTVAL", "SETVAL", "LO_IMPORT", "LO_EXPORT", "LO_UNLINK",
    "PG_READ_FILE", "PG_READ_BINARY_FILE", "PG_LS_DIR", "PG_ADVISORY_LOCK",
    "PG_ADVISORY_XACT_LOCK", "DBLINK_EXEC", "DBLINK",
    "LOAD_FILE", "GET_LOCK", "LOAD_EXTENSION",
    "XP_CMDSHELL", "SP_EXECUTESQL", "SP_CONFIGURE", "OPENROWSET", "OPENQUERY", "OPENDATASOURCE",
})

WHERE_FUNCTIONS = frozenset({
    "UPPER", "LOWER", "TRIM", "LTRIM", "RTRIM", "SUBSTRING", "SUBSTR", "CAST", "CONVERT",
    "COALESCE", "DATE", "YEAR", "MONTH", "DAY", "DATE_TRUNC", "TO_CHAR", "LENGTH", "CONCAT",
})


def dialect_for(engine_kind) -> Optional[str]:
    """sqlglot dialect name of an engine kind (enum or string); None means generic."""
    return DIALECT_MAP.get(getattr(engine_kind, "value", engine_kind))


def position_of(sql: str, offset: int) -> Tuple[int, int]:
    """1-based line and column of an absolute offset."""
    line = sql.count("\n", 0, offset) + 1
    line_start = sql.rfind("\n", 0, offset) + 1
    return line, offset - line_start + 1


def bind_name(parameter: str) -> str:
    """Name a parameter is bound under when the statement runs; positional ones become p1, p2, ..."""
    return f"p{parameter}" if parameter.isdigit() else parameter


class MultipleStatementsError(SqlglotError):
    """More than one statement in a text that must hold exactly one."""

    def __init__(self, offset: Optional[int]):
        super().__init__("Multiple SQL statements are not allowed")
        self.offset = offset


def _second_statement_offset(sql: str, dialect: Optional[str]) -> Optional[int]:
    seen_separator = False
    for token in Dialect.get_or_raise(dialect).tokenize(sql):
        if token.token_type == TokenType.SEMICOLON:
            seen_separator = True
        elif seen_separator:
            return token.start
    return None


def parse_statement(sql: str, dialect: Optional[str] = None) -> exp.Expression:
    """Parse text holding exactly one statement.

    Raises:
        ParseError: The text is not valid SQL for the dialect
        TokenError: The text could not be tokenized
        MultipleStatementsError: The text holds more than one statement
    """
    statements = [
        statement for statement in sqlglot.parse(sql, dialect=dialect)
        if statement is not None and not isinstance(statement, exp.Semicolon)
    ]
    if not statements:
        raise ParseError("SQL text contains no statement")
    if len(statements) > 1:
        raise MultipleStatementsError(_second_statement_offset(sql, dialect))
    return statements[0]


def parameter_nodes(tree: exp.Expression) -> Iterator[Tuple[exp.Expression, str]]:
    """Placeholders in text order with their parameter names.

    Anonymous ``?`` placeholders are numbered ``"1"``, ``"2"``, ...; numbered
    forms such as ``$1`` or ``:1`` keep their number.
    """
    positional = 0
    for node in tree.find_all(exp.Placeholder, exp.Parameter, bfs=False):
        if isinstance(node, exp.Placeholder) and not node.this:
            positional += 1
            yield node, str(positional)
        elif node.name:
            yield node, node.name


def function_name(node: exp.Func) -> str:
    if isinstance(node, exp.Anonymous):
        return node.name.upper()
    return node.sql_name().upper()


def statement_type(tree: exp.Expression) -> str:
    if isinstance(tree, exp.Query):
        return "SELECT"
    if isinstance(tree, exp.Command):
        return str(tree.this).upper()
    for node_type, name in STATEMENT_TYPES.items():
        if isinstance(tree, node_type):
            return name
    return tree.key.upper()


def side_effect_functions(tree: exp.Expression) -> List[str]:
    found = []
    for node in tree.find_all(exp.Func, bfs=False):
        name = function_name(node)
        if name in SIDE_EFFECT_FUNCTIONS and name.lower() not in found:
            found.append(name.lower())
    return found


def is_read_only(tree: exp.Expression) -> bool:
    """Whether the statement can only read, including everything nested in it."""
    if not isinstance(tree, READ_ONLY_ROOTS):
        return False
    if tree.find(*MUTATING_EXPRESSIONS) is not None:
        return False
    if tree.find(exp.Into, exp.Lock) is not None:
        return False
    return not side_effect_functions(tree)


def _structure_errors(tree: exp.Expression) -> List[str]:
    """Shapes the parser tolerates but no engine accepts."""
    errors = []
    for select in tree.find_all(exp.Select):
        if not select.expressions:
            errors.append("Expected select list after SELECT")
            break
    for update in tree.find_all(exp.Update):
        if not update.expressions:
            errors.append("UPDATE statement is missing a SET clause")
            break
    return errors


def _table_names(tree: exp.Expression) -> List[str]:
    cte_names: Set[str] = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
    tables: List[str] = []
    for table in tree.find_all(exp.Table, bfs=False):
        if not table.name:
            continue
        if not table.db and table.name.lower() in cte_names:
            continue
        name = ".".join(part for part in (table.catalog, table.db, table.name) if part)
        if name not in tables:
            tables.append(name)
    return tables


def _warnings(tree: exp.Expression, read_only: bool) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []

    def warn(message: str, category: str) -> None:
        if all(existing.message != message for existing in warnings):
            warnings.append(ValidationWarning(message, category))

    for select in tree.find_all(exp.Select):
        for projection in select.expressions:
            if isinstance(projection, exp.Star) or (
                isinstance(projection, exp.Column) and isinstance(projection.this, exp.Star)
            ):
                warn("SELECT * retrieves every column; list only the columns you need", "performance")

    if read_only and isinstance(tree, exp.Query) and not tree.args.get("limit") and tree.find(exp.From):
        warn("No LIMIT clause on unbounded SELECT; the gateway row limit will apply", "performance")

    for like in tree.find_all(exp.Like, exp.ILike):
        pattern = like.expression
        if isinstance(pattern, exp.Literal) and pattern.is_string and pattern.this.startswith("%"):
            warn("LIKE pattern with a leading wildcard prevents index usage", "performance")

    for where in tree.find_all(exp.Where):
        if where.find(exp.Or) is not None:
            warn("OR conditions in WHERE may prevent index usage; consider UNION or IN", "performance")
        for func in where.find_all(exp.Func):
            if function_name(func) in WHERE_FUNCTIONS and func.find(exp.Column) is not None:
                warn("Function call on a column in WHERE may prevent index usage", "performance")

    if isinstance(tree, (exp.Delete, exp.Update)) and not tree.args.get("where"):
        warn(f"{statement_type(tree)} without WHERE affects every row in the table", "security")
    if isinstance(tree, (exp.Drop, exp.TruncateTable)):
        warn(f"{statement_type(tree)} is destructive and cannot be undone", "security")
    for lock in tree.find_all(exp.Lock):
        if lock.args.get("update"):
            warn("FOR UPDATE takes row locks", "security")
    if tree.find(exp.Into) is not None:
        warn("SELECT ... INTO writes data into a table or file", "security")
    for name in side_effect_functions(tree):
        warn(f"Function {name}() has side effects on the server", "security")

    return warnings


def _invalid(message: str, line: Optional[int] = None, column: Optional[int] = None) -> ValidationResult:
    logger.debug(f"SQL validation failed: {message}")
    return ValidationResult(is_valid=False, errors=[ValidationIssue(message, line, column)])


def validate(sql: str, dialect: Optional[str] = None) -> ValidationResult:
    """Validate SQL text: well-formedness, read-only classification, parameters and warnings.

    Args:
        sql: The SQL text, exactly one statement
        dialect: sqlglot dialect of the target engine, generic when None
    """
    if sql is None or not sql.strip():
        return _invalid("SQL text is empty")

    try:
        tree = parse_statement(sql, dialect)
    except MultipleStatementsError as e:
        if e.offset is None:
            return _invalid(str(e))
        return _invalid(str(e), *position_of(sql, e.offset))
    except ParseError as e:
        detail = e.errors[0] if e.errors else {}
        return _invalid(detail.get("description") or str(e), detail.get("line"), detail.get("col"))
    except TokenError as e:
        cause = e.__cause__ or e
        return _invalid(f"Could not tokenize SQL: {cause}")

    structure_errors = _structure_errors(tree)
    if structure_errors:
        return _invalid(structure_errors[0])

    read_only = is_read_only(tree)
    parameters: List[str] = []
    for _, name in parameter_nodes(tree):
        if name not in parameters:
            parameters.append(name)

    return ValidationResult(
        is_valid=True,
        errors=[],
        warnings=_warnings(tree, read_only),
        is_read_only=read_only,
        parameters=parameters,
        statement_type=statement_type(tree),
        tables=_table_names(tree),
        formatted_sql=tree.sql(dialect=dialect, pretty=True),
    )
