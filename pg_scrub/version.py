from importlib.metadata import version, PackageNotFoundError

PG_SCRUB_VERSION = "1.2.0"

try:
    # Get version from metadata
    __version__ = version("pg_scrub")
except PackageNotFoundError:
    # package is not installed, return hardcoded
    __version__ = PG_SCRUB_VERSION
