import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pg_scrub.common.config import ScrubConfig, load_config
from pg_scrub.common.constants import LOGS_DIR_NAME, LOGS_FILE_NAME
from pg_scrub.common.dto import ConnectionParams, RunOptions
from pg_scrub.common.db_utils import PgDatabase
from pg_scrub.common.enums import VerboseOptions
from pg_scrub.common.errors import ConfigurationError
from pg_scrub.common.utils import exception_handler, import_object
from pg_scrub.logger import get_logger, logger_add_file_handler, logger_set_log_level
from pg_scrub.registry import SanitizerRegistry


class Context:
    @exception_handler
    def __init__(self, options: RunOptions, environ: Optional[Mapping[str, str]] = None):
        self.options = options
        self.logger = None
        self.log_path: Optional[Path] = None
        self._registry: Optional[SanitizerRegistry] = None
        self.setup_logger()
        self.config = self.build_config(environ if environ is not None else os.environ)

    def setup_logger(self):
        log_level = logging.INFO
        if self.options.verbose == VerboseOptions.DEBUG:
            log_level = logging.DEBUG
        elif self.options.verbose == VerboseOptions.ERROR:
            log_level = logging.ERROR

        log_dir = Path(self.options.run_dir) / LOGS_DIR_NAME

        self.log_path = logger_add_file_handler(
            log_dir=log_dir,
            log_file_name=LOGS_FILE_NAME
        )
        logger_set_log_level(log_level=log_level)
        self.logger = get_logger()

    def build_config(self, environ: Mapping[str, str]) -> ScrubConfig:
        """
        YAML config, then environment toggles, then command line options
        """
        config = load_config(self.options.config).with_env(environ)

        update = {}
        safe_scrub_update = {}

        if self.options.dry_run:
            update["dry_run"] = True
        if self.options.no_prune:
            update["prune_enabled"] = False
        if self.options.continue_on_error:
            update["continue_on_error"] = True
        if self.options.verbose == VerboseOptions.DEBUG:
            update["verbose"] = True
        if self.options.db_url:
            update["database_url"] = self.options.db_url

        if self.options.source_url:
            safe_scrub_update["source_url"] = self.options.source_url
        if self.options.target_url:
            safe_scrub_update["target_url"] = self.options.target_url
        if self.options.export_path:
            safe_scrub_update["export_path"] = self.options.export_path
        if self.options.export_format:
            safe_scrub_update["export_format"] = self.options.export_format

        if safe_scrub_update:
            update["safe_scrub"] = config.safe_scrub.model_copy(update=safe_scrub_update)

        if config.verbose and self.options.verbose == VerboseOptions.INFO:
            logger_set_log_level(logging.DEBUG)

        return config.model_copy(update=update)

    @property
    def registry(self) -> SanitizerRegistry:
        if self._registry is None:
            self._registry = self.load_registry()
        return self._registry

    def load_registry(self) -> SanitizerRegistry:
        if not self.options.sanitizers:
            raise ConfigurationError("Sanitizers are required: --sanitizers module:attribute")

        loaded = import_object(self.options.sanitizers)
        if isinstance(loaded, SanitizerRegistry):
            return loaded

        if isinstance(loaded, (list, tuple, set)):
            return SanitizerRegistry(loaded)

        raise ConfigurationError(
            f"{self.options.sanitizers} must be a SanitizerRegistry or a list of Sanitizer classes"
        )

    @property
    def database_url(self) -> str:
        if not self.config.database_url:
            raise ConfigurationError("Database url is required: --db-url or DATABASE_URL")
        return self.config.database_url

    async def connect(self, url: Optional[str] = None) -> PgDatabase:
        params = ConnectionParams.from_url(url or self.database_url)
        self.logger.info(f"Connecting to {params.safe_url}")
        return await PgDatabase.connect(params)
