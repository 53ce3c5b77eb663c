from pathlib import Path

RUNS_BASE_DIR = Path.cwd() / "runs"
LOGS_DIR_NAME = "logs"
LOGS_FILE_NAME = "pg_scrub.log"
TRACEBACK_LINES_COUNT = 100

# Never subject to coverage checks or read-time masking
PROTECTED_COLUMNS = ("id", "created_at", "updated_at")

DEFAULT_TIMESTAMP_COLUMN = "created_at"
DEFAULT_PRIMARY_KEY = "id"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_PG_PORT = 5432
DEFAULT_TEST_EMAIL_DOMAIN = "example.test"
DEFAULT_TOKEN_COLUMNS = ["reset_password_token", "confirmation_token"]

# Bookkeeping tables of migration tools; they never map to an entity
INTERNAL_TABLES = (
    "schema_migrations",
    "ar_internal_metadata",
    "alembic_version",
    "django_migrations",
)

DEFAULT_EXCLUDED_SCHEMAS = [
    "pg_catalog",
    "information_schema",
    "pg_toast",
]

SERVER_SETTINGS = {
    "application_name": "pg_scrub",
    "statement_timeout": "0",
    "lock_timeout": "0",
}

SECRET_RUN_OPTIONS = [
    "db_url",
    "source_url",
    "target_url",
]

# Environment toggles
ENV_DRY_RUN = "DRY_RUN"
ENV_VERBOSE = "VERBOSE"
ENV_PRUNE = "PRUNE"
ENV_PRIMARY_DATABASE_URL = "DATABASE_URL"
ENV_SOURCE_DATABASE_URL = "SOURCE_DATABASE_URL"
ENV_TARGET_DATABASE_URL = "TARGET_DATABASE_URL"
ENV_TARGET_DATABASE_URL_ALIAS = "SCRUBBED_DATABASE_URL"
ENV_EXPORT_PATH = "EXPORT_PATH"

# Table name fragments typical for log-like tables (pruning analyzer)
LOG_TABLE_PATTERNS = [
    "log",
    "event",
    "activity",
    "session",
    "history",
    "audit",
    "track",
    "analytic",
]
