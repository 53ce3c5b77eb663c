from typing import Mapping, Optional

from pg_scrub.common.dto import PgScrubResult, RunOptions
from pg_scrub.common.enums import ScrubMode
from pg_scrub.common.utils import check_pg_util, exception_helper
from pg_scrub.context import Context
from pg_scrub.logger import logger_close_file_handler
from pg_scrub.modes.analyze import AnalyzeMode
from pg_scrub.modes.dump import DumpMode
from pg_scrub.modes.lint import LintMode
from pg_scrub.modes.list import ListMode
from pg_scrub.modes.run import RunMode
from pg_scrub.modes.safe_scrub import SafeScrubMode
from pg_scrub.version import __version__


class PgScrubApp:

    def __init__(self, options: RunOptions, environ: Optional[Mapping[str, str]] = None):
        self.context = Context(options, environ=environ)
        self.result = PgScrubResult()
        self._check_postgres_utils_required = self.context.options.mode in (
            ScrubMode.SAFE_SCRUB,
            ScrubMode.DUMP,
        )

    def _bootstrap(self):
        self.context.logger.info(
            "============> Started pg_scrub (v%s) in mode: %s"
            % (__version__, self.context.options.mode.value)
        )
        if self.context.options.debug:
            params_info = "#--------------- Run options\n"
            params_info += self.context.options.to_json()
            params_info += "\n#-----------------------------------"
            self.context.logger.debug(params_info)

    def _check_postgres_utils(self):
        if not self._check_postgres_utils_required:
            return

        self.context.logger.info("Postgres utils exists checking")

        settings = self.context.config.safe_scrub
        pg_dump_exists = check_pg_util(settings.pg_dump, "pg_dump")
        psql_exists = check_pg_util(settings.psql, "psql")

        if not pg_dump_exists or not psql_exists:
            raise RuntimeError("pg_dump or psql not found")

    def _get_mode(self):
        if self.context.options.mode == ScrubMode.LIST:
            return ListMode(self.context)

        if self.context.options.mode == ScrubMode.LINT:
            return LintMode(self.context)

        if self.context.options.mode == ScrubMode.RUN:
            return RunMode(self.context)

        if self.context.options.mode == ScrubMode.SAFE_SCRUB:
            return SafeScrubMode(self.context)

        if self.context.options.mode == ScrubMode.DUMP:
            return DumpMode(self.context)

        if self.context.options.mode == ScrubMode.ANALYZE:
            return AnalyzeMode(self.context)

        raise RuntimeError("Unknown mode: " + self.context.options.mode.value)

    async def run(self) -> PgScrubResult:
        self._bootstrap()
        self.result.start(self.context.options)
        try:
            self._check_postgres_utils()

            mode = self._get_mode()
            self.result.result_data = await mode.run()
            self.result.complete()
        except Exception as exc:
            self.context.logger.error(exception_helper(show_traceback=True))
            self.result.fail(exc)

        self.context.logger.info(
            f"<============ Finished pg_scrub in mode: {self.context.options.mode.value}, "
            f"result_code = {self.result.result_code.value}, "
            f"elapsed: {self.result.elapsed} sec"
        )
        logger_close_file_handler()
        return self.result
