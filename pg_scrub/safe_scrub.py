import os
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from pg_scrub.common.config import ScrubConfig
from pg_scrub.common.dto import ConnectionParams, RunSummary
from pg_scrub.common.db_utils import PgDatabase, drop_database, recreate_database
from pg_scrub.common.enums import ExportFormat
from pg_scrub.common.errors import (
    ConfigurationError,
    CopyError,
    ExportError,
    LeakDetectedError,
    SourceWriteAccessError,
)
from pg_scrub.common.utils import pretty_size
from pg_scrub.logger import get_logger
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.runner import Runner
from pg_scrub.schema import Database
from pg_scrub.validator import ValidationResult, Validator

logger = get_logger()

READONLY_ROLE_HINT = """Source database credentials have WRITE access!

For maximum safety, the source connection should be read-only.
Create a read-only database user and use it in SOURCE_DATABASE_URL:

  CREATE ROLE pg_scrub_readonly WITH LOGIN PASSWORD 'your_password';
  GRANT CONNECT ON DATABASE your_db TO pg_scrub_readonly;
  GRANT USAGE ON SCHEMA public TO pg_scrub_readonly;
  GRANT SELECT ON ALL TABLES IN SCHEMA public TO pg_scrub_readonly;
"""


def pg_env(params: ConnectionParams) -> Dict[str, str]:
    env = dict(os.environ)
    if params.password:
        env["PGPASSWORD"] = params.password
    return env


def pg_connection_args(params: ConnectionParams) -> List[str]:
    args = ["-h", params.host, "-p", str(params.port)]
    if params.user:
        args.extend(["-U", params.user])
    return args


def pg_dump_args(
    pg_dump: str,
    params: ConnectionParams,
    export_format: ExportFormat = ExportFormat.PLAIN,
    output_file: Optional[str] = None,
) -> List[str]:
    args = [pg_dump, "-Fc" if export_format == ExportFormat.CUSTOM else "-Fp", "--no-owner"]
    args.extend(pg_connection_args(params))
    if output_file:
        args.extend(["-f", str(output_file)])
    args.append(params.database)
    return args


def psql_args(psql: str, params: ConnectionParams) -> List[str]:
    return [psql, "-q", "-v", "ON_ERROR_STOP=1", *pg_connection_args(params), "-d", params.database]


class DatabaseProvisioner:
    """
    Creates, copies, exports and drops whole databases with PostgreSQL client tools
    """

    def __init__(self, pg_dump: str = "pg_dump", psql: str = "psql"):
        self.pg_dump = pg_dump
        self.psql = psql

    async def recreate(self, params: ConnectionParams):
        await recreate_database(params)

    async def drop(self, params: ConnectionParams):
        await drop_database(params)

    async def copy(self, source: ConnectionParams, target: ConnectionParams):
        """
        Streams pg_dump of source into psql connected to target
        """
        dump_command = pg_dump_args(self.pg_dump, source)
        restore_command = psql_args(self.psql, target)
        logger.debug(f"{dump_command} | {restore_command}")

        with tempfile.TemporaryFile() as dump_errors:
            dump_proc = subprocess.Popen(
                dump_command, stdout=subprocess.PIPE, stderr=dump_errors, env=pg_env(source)
            )
            restore_proc = subprocess.Popen(
                restore_command,
                stdin=dump_proc.stdout,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=pg_env(target),
            )
            # psql owns the pipe now, pg_dump gets SIGPIPE if psql exits
            dump_proc.stdout.close()
            _, restore_logs = restore_proc.communicate()
            dump_proc.wait()

            dump_errors.seek(0)
            dump_logs = dump_errors.read().decode(errors="replace")

        for log_line in (dump_logs + restore_logs.decode(errors="replace")).split("\n"):
            if log_line.strip():
                logger.info(log_line)

        if dump_proc.returncode != 0 or restore_proc.returncode != 0:
            msg = (
                f"Database copy failed: pg_dump exit code {dump_proc.returncode}, "
                f"psql exit code {restore_proc.returncode}"
            )
            logger.error(msg)
            raise CopyError(msg)

    async def export(self, params: ConnectionParams, path: str, export_format: ExportFormat) -> int:
        """
        Dumps database into file, returns file size in bytes
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        command = pg_dump_args(self.pg_dump, params, export_format=export_format, output_file=path)
        logger.debug(str(command))

        proc = subprocess.Popen(
            command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, env=pg_env(params)
        )
        _, pg_dump_logs = proc.communicate()
        for log_line in pg_dump_logs.split("\n"):
            if log_line.strip():
                logger.info(log_line)

        if proc.returncode != 0:
            msg = f"Export failed: pg_dump exit code {proc.returncode}"
            logger.error(msg)
            raise ExportError(msg)

        return os.path.getsize(path)


@dataclass
class SafeScrubResult:
    source: str
    target: str
    summary: Optional[RunSummary] = None
    validation: Optional[ValidationResult] = None
    export_path: Optional[str] = None
    export_size: Optional[int] = None


Connect = Callable[[ConnectionParams], Awaitable[Database]]


class SafeScrubber:
    """
    Copy-then-scrub workflow. The source database is only read: it is copied into
    a freshly created target and everything destructive happens on the target.

    Phases run in order and any failure aborts the rest:
    validate configuration -> check source is read-only -> confirm target ->
    recreate target -> copy -> prune and sanitize target -> validate target -> export
    """

    def __init__(
        self,
        registry: SanitizerRegistry,
        config: Optional[ScrubConfig] = None,
        source_url: Optional[str] = None,
        target_url: Optional[str] = None,
        primary_url: Optional[str] = None,
        export_path: Optional[str] = None,
        export_format: Optional[ExportFormat] = None,
        confirm: Optional[bool] = None,
        require_readonly_source: Optional[bool] = None,
        provisioner: Optional[DatabaseProvisioner] = None,
        connect: Optional[Connect] = None,
        input_func: Callable[[str], str] = input,
        now: Optional[datetime] = None,
    ):
        self.registry = registry
        self.config = config or ScrubConfig()
        settings = self.config.safe_scrub

        self.primary_url = primary_url if primary_url is not None else self.config.database_url
        self.source_url = source_url or settings.source_url or self.primary_url
        self.target_url = target_url or settings.target_url
        self.export_path = export_path or settings.export_path
        self.export_format = export_format or settings.export_format
        # None: interactive prompt, True: confirmed, False: declined
        self.confirm = confirm
        self.require_readonly_source = (
            settings.require_readonly_source if require_readonly_source is None else require_readonly_source
        )
        self.provisioner = provisioner or DatabaseProvisioner(pg_dump=settings.pg_dump, psql=settings.psql)
        self.connect = connect or PgDatabase.connect
        self.input_func = input_func
        self.now = now

        self.source: Optional[ConnectionParams] = None
        self.target: Optional[ConnectionParams] = None

    def validate_configuration(self):
        if not self.source_url or not self.source_url.strip():
            raise ConfigurationError("Source database url is required (SOURCE_DATABASE_URL)")
        if not self.target_url or not self.target_url.strip():
            raise ConfigurationError("Target database url is required (TARGET_DATABASE_URL)")

        source = ConnectionParams.from_url(self.source_url)
        target = ConnectionParams.from_url(self.target_url)

        if self.source_url.strip() == self.target_url.strip() or source.same_database(target):
            raise ConfigurationError(
                "SAFETY ERROR: source and target cannot be the same database!\n"
                f"  Source: {source.safe_url}\n"
                f"  Target: {target.safe_url}"
            )

        if self.primary_url:
            primary = ConnectionParams.from_url(self.primary_url)
            if target.same_database(primary):
                raise ConfigurationError(
                    "SAFETY ERROR: target cannot be the primary database (DATABASE_URL)!\n"
                    f"  Target: {target.safe_url}\n"
                    "  Use a separate database for the scrubbed copy."
                )

        self.source = source
        self.target = target

    async def validate_source_readonly(self):
        source_db = await self.connect(self.source)
        try:
            writable = await source_db.probe_write_access()
        finally:
            await source_db.close()

        if not writable:
            logger.info("Source connection is read-only")
            return

        if self.require_readonly_source:
            logger.error(READONLY_ROLE_HINT)
            raise SourceWriteAccessError("Source database has write access. Use a read-only credential.")

        logger.warning(READONLY_ROLE_HINT)
        logger.warning("Continuing anyway (require_readonly_source is disabled)")

    def confirm_target(self):
        target_db = self.target.database
        target_host = self.target.host

        if self.confirm is True:
            logger.info(f"Target confirmed: {target_db} on {target_host}")
            return

        if self.confirm is False:
            raise ConfigurationError(
                "Confirmation required. Pass --yes or use interactive mode.\n"
                f"  Target: {target_db} on {target_host}"
            )

        logger.warning("This will DESTROY and RECREATE the target database!")
        logger.warning(f"  Target database: {target_db}")
        logger.warning(f"  Target host:     {target_host}")
        try:
            answer = self.input_func(f"Type the database name '{target_db}' to confirm: ")
        except EOFError:
            answer = ""

        answer = (answer or "").strip()
        if answer != target_db:
            raise ConfigurationError(f"Confirmation failed. You entered '{answer}', expected '{target_db}'")

        logger.info("Confirmed.")

    async def _step(self, message: str, action: Callable[[], Awaitable]):
        logger.info(f">> {message}...")
        try:
            result = await action()
        except Exception as exc:
            logger.error(f"   Failed: {exc}")
            raise
        logger.info("   Done")
        return result

    async def _sanitize_and_validate(self, result: SafeScrubResult):
        target_db = await self.connect(self.target)
        try:
            runner = Runner(target_db, self.registry, self.config, now=self.now)
            result.summary = await self._step("Pruning and running sanitizers against target", runner.run_all)

            validator = Validator(target_db, self.config.validator)
            result.validation = await self._step("Verifying scrubbed data", validator.run)
        finally:
            await target_db.close()

        if not result.validation.passed:
            for error in result.validation.errors:
                logger.error(f"  - {error}")
            raise LeakDetectedError(result.validation.errors)

        logger.info("   Validation passed - no PII leaks detected")

    async def run(self) -> SafeScrubResult:
        self.validate_configuration()
        await self.validate_source_readonly()
        self.confirm_target()

        result = SafeScrubResult(source=self.source.safe_url, target=self.target.safe_url)

        logger.info("-------------> Started safe scrub (source database will NOT be modified)")
        logger.info(f"  Source: {self.source.safe_url}")
        logger.info(f"  Target: {self.target.safe_url}")
        if self.export_path:
            logger.info(f"  Export: {self.export_path} ({self.export_format.value})")

        await self._step("Creating fresh target database", lambda: self.provisioner.recreate(self.target))
        await self._step("Copying data from source to target", lambda: self.provisioner.copy(self.source, self.target))
        await self._sanitize_and_validate(result)

        if self.export_path:
            result.export_path = self.export_path
            result.export_size = await self._step(
                "Exporting scrubbed database",
                lambda: self.provisioner.export(self.target, self.export_path, self.export_format),
            )
            logger.info(f"   Exported {pretty_size(result.export_size)} to {self.export_path}")

        logger.info(f"<------------- Finished safe scrub: scrubbed database ready at {self.target.safe_url}")
        return result
