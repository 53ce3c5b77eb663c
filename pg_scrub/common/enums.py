from enum import Enum


class ResultCode(Enum):
    DONE = "done"
    FAIL = "fail"
    UNKNOWN = "unknown"


class VerboseOptions(Enum):
    INFO = "info"
    DEBUG = "debug"
    ERROR = "error"


class ScrubMode(Enum):
    LIST = "list"  # list registered sanitizers
    LINT = "lint"  # check column coverage of every sanitizer
    RUN = "run"  # scrub the database in place (destructive)
    SAFE_SCRUB = "safe-scrub"  # copy source into a fresh target and scrub the copy
    DUMP = "dump"  # scrubbed dump through an ephemeral temporary database
    ANALYZE = "analyze"  # table sizes and pruning candidates


class BulkOperationType(Enum):
    TRUNCATE = "truncate"
    DELETE = "delete"
    DESTROY = "destroy"


class ConflictPolicy(Enum):
    WARN = "warn"
    RAISE = "raise"
    ROLLBACK = "rollback"


class PruneDirection(Enum):
    OLDER_THAN = "older_than"
    NEWER_THAN = "newer_than"


class ExportFormat(Enum):
    CUSTOM = "custom"  # pg_dump -Fc
    PLAIN = "plain"  # pg_dump -Fp


class ExecutorState(Enum):
    IDLE = "idle"
    COVERAGE_CHECK = "coverage_check"
    BULK_OPERATION = "bulk_operation"
    PRUNE_STEP = "prune_step"
    RECORD_LOOP = "record_loop"
    VERIFY = "verify"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
