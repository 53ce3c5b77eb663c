from pg_scrub.app import PgScrubApp
from pg_scrub.common.config import PruningConfig, ScrubConfig, load_config
from pg_scrub.common.errors import (
    CircularReferenceError,
    ConfigurationError,
    CoverageError,
    LeakDetectedError,
    PgScrubError,
    PruningConflictError,
    SanitizerDefinitionError,
    SourceWriteAccessError,
    UnknownSanitizerError,
    VerificationError,
)
from pg_scrub.conditions import Raw, col, where
from pg_scrub.generators import (
    current_faker,
    fake_email,
    fake_id,
    fake_json,
    fake_or_blank,
    fake_password,
    fake_phone,
    match_length,
)
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.runner import Runner
from pg_scrub.safe_scrub import SafeScrubber
from pg_scrub.sanitizer import (
    EmptySanitizer,
    Sanitizer,
    delete_all,
    destroy_all,
    prune,
    prune_newer_than,
    prune_older_than,
    scrub,
    truncate,
    verify,
    verify_each,
)
from pg_scrub.soft_scrubbing import MaskingOverlay, SoftScrubbingPolicy, viewer_context, without_viewer_context
from pg_scrub.validator import Validator
from pg_scrub.version import __version__
