"""Constants for QueryGate."""

# Row limits
DEFAULT_ROW_LIMIT = 100
MAX_ROW_LIMIT = 10000

# Query timeouts (milliseconds)
DEFAULT_QUERY_TIMEOUT_MS = 30000
MAX_QUERY_TIMEOUT_MS = 300000

# Connection pool settings
DEFAULT_POOL_SIZE = 5
DEFAULT_ACQUIRE_TIMEOUT_MS = 30000
DEFAULT_IDLE_TIMEOUT_S = 600
DEFAULT_SWEEP_INTERVAL_S = 30
POOL_RECYCLE_S = 3600
CONNECT_TIMEOUT_S = 30

# Schema cache
DEFAULT_SCHEMA_TTL_S = 300

# Relative embedded database files are resolved against this directory
DEFAULT_DATA_DIR = "data/uploads"

# Default ports
DEFAULT_POSTGRES_PORT = 5432
DEFAULT_MYSQL_PORT = 3306
DEFAULT_MSSQL_PORT = 1433
DEFAULT_ORACLE_PORT = 1521
DEFAULT_CLICKHOUSE_PORT = 8123
DEFAULT_SNOWFLAKE_SCHEMA = "PUBLIC"

# Audit logging never stores more SQL than this
MAX_LOGGED_SQL_LENGTH = 500

# Partial introspection failure policies
SCHEMA_PARTIAL_OMIT = "omit"
SCHEMA_PARTIAL_FAIL = "fail"
SCHEMA_PARTIAL_POLICIES = [SCHEMA_PARTIAL_OMIT, SCHEMA_PARTIAL_FAIL]

# Supported engine kinds
SUPPORTED_ENGINE_KINDS = ["sqlite", "postgresql", "mysql", "mssql", "oracle", "clickhouse", "snowflake"]

# System schemas to exclude from introspection
POSTGRES_SYSTEM_SCHEMAS = ["information_schema", "pg_catalog", "pg_toast"]
MYSQL_SYSTEM_SCHEMAS = ["information_schema", "mysql", "performance_schema", "sys"]
MSSQL_SYSTEM_SCHEMAS = ["INFORMATION_SCHEMA", "sys", "guest"]
ORACLE_SYSTEM_SCHEMAS = ["SYS", "SYSTEM", "OUTLN", "XDB", "MDSYS", "CTXSYS"]
SNOWFLAKE_SYSTEM_SCHEMAS = ["INFORMATION_SCHEMA", "SNOWFLAKE", "SNOWFLAKE_SAMPLE_DATA"]
CLICKHOUSE_SYSTEM_SCHEMAS = ["system", "INFORMATION_SCHEMA", "information_schema"]
