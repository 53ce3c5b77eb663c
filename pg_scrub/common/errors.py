from typing import Dict, List, Optional


class PgScrubError(Exception):
    """Base class of every error raised by pg_scrub."""


class ConfigurationError(PgScrubError):
    """Invalid or missing configuration, unsafe connection targets, failed confirmation."""


class SanitizerDefinitionError(PgScrubError, ValueError):
    """A sanitizer is declared in a contradictory or unsupported way."""


class UnknownSanitizerError(PgScrubError, LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown sanitizer: {name}")


class CoverageError(PgScrubError):
    def __init__(self, sanitizer_name: str, columns: List[str]):
        self.sanitizer_name = sanitizer_name
        self.columns = columns
        super().__init__(
            f"{sanitizer_name} is missing definitions for: {', '.join(columns)}. "
            f"Add a scrub rule or a keep declaration for each, or disable strict mode"
        )


class VerificationError(PgScrubError):
    pass


class SourceWriteAccessError(PgScrubError):
    pass


class PruningConflictError(PgScrubError):
    def __init__(self, tables: List[str], message: Optional[str] = None):
        self.tables = tables
        super().__init__(
            message or
            f"Global pruning and sanitizer-level pruning both target: {', '.join(tables)}"
        )


class PruningRollbackError(PruningConflictError):
    """Raised inside the run transaction so that the whole run is rolled back."""


class InvalidInputError(PgScrubError, ValueError):
    pass


class CircularReferenceError(PgScrubError):
    def __init__(self, sanitizer_name: str, chain: List[str]):
        self.sanitizer_name = sanitizer_name
        self.chain = chain
        super().__init__(
            f"{sanitizer_name}: circular scrub reference {' -> '.join(chain)}"
        )


class MissingTableError(PgScrubError, LookupError):
    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table {table} does not exist")


class DependentRowsError(PgScrubError):
    """A delete was rejected because other rows still reference the deleted ones."""

    def __init__(self, table: str, detail: str = ""):
        self.table = table
        super().__init__(f"Rows of {table} are still referenced: {detail}".rstrip(": "))


class CopyError(PgScrubError):
    pass


class ExportError(PgScrubError):
    pass


class LeakDetectedError(PgScrubError):
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(
            "Verification failed - PII detected in scrubbed database:\n"
            + "\n".join(f"  - {error}" for error in errors)
        )


class LintError(PgScrubError):
    def __init__(self, issues: Dict[str, List[str]]):
        self.issues = issues
        count = sum(len(sanitizer_issues) for sanitizer_issues in issues.values())
        super().__init__(f"Found {count} lint issue(s) in {len(issues)} sanitizer(s)")
