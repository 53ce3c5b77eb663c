from datetime import datetime
from typing import Iterable, List, Optional

from prettytable import PrettyTable, SINGLE_BORDER

from pg_scrub.common.config import ScrubConfig
from pg_scrub.common.dto import RunSummary
from pg_scrub.executor import SanitizerExecutor
from pg_scrub.logger import get_logger
from pg_scrub.pruner import Pruner
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.schema import Database

logger = get_logger()


def render_summary(summary: RunSummary) -> str:
    table = PrettyTable([
        'sanitizer',
        'state',
        'processed',
        'sanitized',
        'skipped',
        'errors',
        'deleted',
        'pruned',
        'elapsed',
    ], align='l')
    table.set_style(SINGLE_BORDER)

    for stats in summary.entities:
        table.add_row([
            stats.sanitizer,
            stats.state.value,
            stats.processed,
            stats.sanitized,
            stats.skipped,
            stats.errored,
            stats.deleted,
            stats.pruned,
            stats.duration,
        ])

    lines = [
        "Sanitization Summary",
        table.get_string(),
        f"Total records processed: {summary.total('processed')}",
        f"Sanitized: {summary.total('sanitized')}",
        f"Skipped: {summary.total('skipped')}",
        f"Errors: {summary.total('errored')}",
        f"Globally pruned: {summary.pruned_rows}",
        f"Duration: {summary.duration}s",
        f"Mode: {'DRY RUN (no changes made)' if summary.dry_run else 'LIVE'}",
    ]
    if summary.errors:
        lines.append("Errors encountered:")
        lines.extend(f"  - {error}" for error in summary.errors)

    return "\n".join(lines)


class Runner:
    """
    Runs global pruning and the requested sanitizers inside one transaction
    """

    def __init__(
        self,
        db: Database,
        registry: SanitizerRegistry,
        config: Optional[ScrubConfig] = None,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.registry = registry
        self.config = config or ScrubConfig()
        self.now = now
        self.summary: Optional[RunSummary] = None

    @property
    def mode(self) -> str:
        return "DRY RUN" if self.config.dry_run else "LIVE"

    def available(self) -> List[str]:
        return self.registry.available()

    async def run_all(self) -> RunSummary:
        return await self.run(None)

    async def run_global_pruning(self):
        pruning = self.config.active_pruning
        if pruning is None:
            return

        pruner = Pruner(self.db, self.registry, pruning, dry_run=self.config.dry_run, now=self.now)
        self.summary.pruned_tables = await pruner.run()

    async def run(self, names: Optional[Iterable[str]] = None) -> RunSummary:
        """
        :param names: friendly names of sanitizers, every registered one when empty
        :raises UnknownSanitizerError: before anything runs, when a name is not registered
        """
        sanitizers = self.registry.resolve(names)
        self.summary = RunSummary(dry_run=self.config.dry_run)

        logger.info(f"-------------> Started sanitization [{self.mode}]: {', '.join(s.friendly_name for s in sanitizers)}")
        try:
            async with self.db.transaction():
                await self.run_global_pruning()

                for sanitizer in sanitizers:
                    executor = SanitizerExecutor(
                        sanitizer,
                        self.db,
                        strict=self.config.strict,
                        dry_run=self.config.dry_run,
                        continue_on_error=self.config.continue_on_error,
                        batch_size=self.config.batch_size,
                        allow_keep_undefined=self.config.allow_keep_undefined_columns,
                    )
                    self.summary.entities.append(executor.stats)
                    await executor.run()
        finally:
            self.summary.finish()
            logger.info(render_summary(self.summary))
            logger.info(f"<------------- Finished sanitization [{self.mode}], elapsed: {self.summary.duration} sec")

        return self.summary
