from datetime import datetime
from typing import List, Optional, Set

import asyncpg

from pg_scrub.common.constants import INTERNAL_TABLES
from pg_scrub.common.config import PruningConfig
from pg_scrub.common.dto import PruneStats
from pg_scrub.common.enums import ConflictPolicy, PruneDirection
from pg_scrub.common.errors import DependentRowsError, PgScrubError, PruningConflictError, PruningRollbackError
from pg_scrub.common.utils import format_age
from pg_scrub.conditions import Compare, Condition
from pg_scrub.logger import get_logger
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.schema import Database, SchemaCatalog

logger = get_logger()


class Pruner:
    """
    Global pruning pass: deletes rows older (or newer) than the configured cutoff from
    every eligible table. Each table is pruned in its own nested transaction, so a table
    that can't be pruned (foreign keys or a column of the wrong type) is skipped without
    aborting the pass.

    Tables whose sanitizer declares its own prune are left to that sanitizer.
    """

    def __init__(
        self,
        db: Database,
        registry: SanitizerRegistry,
        config: PruningConfig,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.registry = registry
        self.config = config
        self.dry_run = dry_run
        self.now = now

    def condition(self) -> Condition:
        op = "<" if self.config.direction == PruneDirection.OLDER_THAN else ">="
        return Compare(self.config.column, op, self.config.cutoff(now=self.now), cast="timestamptz")

    def overridden_tables(self) -> Set[str]:
        return {
            sanitizer.table_name
            for sanitizer in self.registry.all()
            if sanitizer.prune_operation is not None and sanitizer.table_name
        }

    def _eligible(self, catalog: SchemaCatalog, table: str) -> bool:
        if not self.config.table_allowed(table):
            return False

        if table in INTERNAL_TABLES:
            return False

        # no primary key means no entity binding
        if catalog.primary_key(table) is None:
            logger.debug(f"  {table}: skipped (no primary key)")
            return False

        return catalog.has_column(table, self.config.column)

    def conflicts(self, catalog: SchemaCatalog) -> List[str]:
        """
        Tables targeted both by global pruning and by a sanitizer level prune
        """
        overridden = self.overridden_tables()
        return [table for table in catalog.tables() if table in overridden and self._eligible(catalog, table)]

    def _check_conflicts(self, catalog: SchemaCatalog):
        conflicts = self.conflicts(catalog)
        if not conflicts:
            return

        if self.config.on_conflict == ConflictPolicy.RAISE:
            raise PruningConflictError(conflicts)

        if self.config.on_conflict == ConflictPolicy.ROLLBACK:
            raise PruningRollbackError(
                conflicts,
                f"Pruning conflict on {', '.join(conflicts)}: rolling back the run",
            )

        logger.warning(
            f"Global pruning and sanitizer level pruning both target: {', '.join(conflicts)}. "
            f"Sanitizer level pruning is used for these tables"
        )

    def tables_to_prune(self, catalog: SchemaCatalog) -> List[str]:
        overridden = self.overridden_tables()
        tables = []
        for table in catalog.tables():
            if not self._eligible(catalog, table):
                continue
            if table in overridden:
                logger.info(f"  {table}: skipped (sanitizer defines its own prune)")
                continue
            tables.append(table)
        return tables

    async def prune_table(self, table: str, condition: Condition) -> PruneStats:
        try:
            async with self.db.transaction():
                if self.dry_run:
                    count = await self.db.count(table, condition)
                    if count > 0:
                        logger.info(f"  {table}: would prune {count} records")
                    return PruneStats(table, deleted=count)

                count = await self.db.delete(table, condition)
        except DependentRowsError as exc:
            logger.info(f"  {table}: skipped: dependencies (has foreign key dependencies)")
            logger.debug(str(exc))
            return PruneStats(table, skipped_reason="dependencies")
        except (asyncpg.PostgresError, PgScrubError) as exc:
            logger.warning(f"  {table}: skipped: {exc}")
            return PruneStats(table, skipped_reason=str(exc))

        if count > 0:
            logger.info(f"  {table}: pruned {count} records")
        return PruneStats(table, deleted=count)

    async def run(self) -> List[PruneStats]:
        catalog = await self.db.catalog()
        self._check_conflicts(catalog)

        label = "older" if self.config.direction == PruneDirection.OLDER_THAN else "newer"
        logger.info("-------------> Started global pruning")
        logger.info(
            f"  Removing records {label} than {format_age(self.config.age)} "
            f"by {self.config.column} {'[DRY RUN]' if self.dry_run else '[LIVE]'}"
        )

        condition = self.condition()
        results = []
        for table in self.tables_to_prune(catalog):
            results.append(await self.prune_table(table, condition))

        total = sum(stats.deleted for stats in results)
        touched = [stats for stats in results if stats.deleted > 0]
        if total > 0:
            logger.info(
                f"<------------- Finished global pruning: {total} records from {len(touched)} table(s)"
                + (" (dry run)" if self.dry_run else "")
            )
        else:
            logger.info("<------------- Finished global pruning: no records matched pruning criteria")

        return results
