import gzip
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pg_scrub.common.config import ScrubConfig
from pg_scrub.common.dto import ConnectionParams
from pg_scrub.common.db_utils import PgDatabase
from pg_scrub.common.enums import ExportFormat
from pg_scrub.common.errors import ConfigurationError
from pg_scrub.common.utils import pretty_size
from pg_scrub.logger import get_logger
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.runner import Runner
from pg_scrub.safe_scrub import Connect, DatabaseProvisioner
from pg_scrub.validator import Validator

logger = get_logger()

LARGE_DUMP_SIZE = 500 * 1024 * 1024


@dataclass
class DumpResult:
    path: Path
    size_bytes: int

    @property
    def size(self) -> str:
        return pretty_size(self.size_bytes)

    @property
    def large(self) -> bool:
        return self.size_bytes > LARGE_DUMP_SIZE


def compress_file(file_path: Path, remove_origin_file_after_compress: bool = True) -> Path:
    gzipped_file_path = file_path.with_name(file_path.name + ".gz")

    logger.debug(f"Start compressing file: {file_path}")
    with (open(file_path, "rb") as f_in,
          gzip.open(gzipped_file_path, "wb") as f_out):
        f_out.writelines(f_in)
    logger.debug(f"Compressing has done. Output file: {gzipped_file_path}")

    if remove_origin_file_after_compress:
        logger.debug(f"Removing origin file: {file_path}")
        file_path.unlink()

    return gzipped_file_path


class DumpGenerator:
    """
    Scrubbed plain SQL dump of a database. The source is copied into an ephemeral
    temporary database on the same server, the copy is pruned, scrubbed and validated,
    exported and gzipped, and the temporary database is dropped in any case.
    """

    def __init__(
        self,
        registry: SanitizerRegistry,
        config: Optional[ScrubConfig] = None,
        source_url: Optional[str] = None,
        output_dir: Union[str, Path, None] = None,
        temp_database: Optional[str] = None,
        provisioner: Optional[DatabaseProvisioner] = None,
        connect: Optional[Connect] = None,
        now: Optional[datetime] = None,
    ):
        self.registry = registry
        self.config = config or ScrubConfig()
        self.source_url = source_url or self.config.safe_scrub.source_url or self.config.database_url
        self.output_dir = Path(output_dir) if output_dir else Path.cwd() / "tmp"
        self.temp_database = temp_database or f"pg_scrub_tmp_{uuid.uuid4().hex[:12]}"
        self.provisioner = provisioner or DatabaseProvisioner(
            pg_dump=self.config.safe_scrub.pg_dump,
            psql=self.config.safe_scrub.psql,
        )
        self.connect = connect or PgDatabase.connect
        self.now = now

    @property
    def output_filename(self) -> str:
        now = self.now or datetime.now(timezone.utc)
        return f"scrubbed-{now.strftime('%Y-%m-%d')}.sql"

    def _resolve_databases(self):
        if not self.source_url:
            raise ConfigurationError("Source database url is required (DATABASE_URL or --db-url)")

        source = ConnectionParams.from_url(self.source_url)
        temp = source.with_database(self.temp_database)
        if temp.same_database(source):
            raise ConfigurationError(f"Temporary database cannot be the source database: {source.safe_url}")

        return source, temp

    async def _scrub(self, temp: ConnectionParams):
        temp_db = await self.connect(temp)
        try:
            await Runner(temp_db, self.registry, self.config, now=self.now).run_all()
            await Validator(temp_db, self.config.validator).validate()
        finally:
            await temp_db.close()

    async def generate(self, output_file: Union[str, Path, None] = None) -> DumpResult:
        source, temp = self._resolve_databases()
        output_path = Path(output_file) if output_file else self.output_dir / self.output_filename

        logger.info(f"-------------> Started scrubbed dump of {source.safe_url} through {temp.database}")
        try:
            await self.provisioner.recreate(temp)
            await self.provisioner.copy(source, temp)
            await self._scrub(temp)
            await self.provisioner.export(temp, str(output_path), ExportFormat.PLAIN)
        finally:
            logger.info(f"Dropping temporary database {temp.database}")
            await self.provisioner.drop(temp)

        gzipped_path = compress_file(output_path)
        result = DumpResult(gzipped_path, gzipped_path.stat().st_size)
        if result.large:
            logger.warning(f"Dump is large ({result.size}), consider pruning more data")

        logger.info(f"<------------- Finished scrubbed dump: {result.path} ({result.size})")
        return result
