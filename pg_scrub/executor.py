import inspect
from typing import Any, Dict, Optional, Type

from pg_scrub.common.constants import DEFAULT_BATCH_SIZE
from pg_scrub.common.dto import RunStats
from pg_scrub.common.enums import BulkOperationType, ExecutorState
from pg_scrub.common.errors import CoverageError, SanitizerDefinitionError, VerificationError
from pg_scrub.conditions import Condition
from pg_scrub.logger import get_logger
from pg_scrub.records import Record
from pg_scrub.sanitizer import Sanitizer
from pg_scrub.schema import Database, SchemaCatalog, Table

logger = get_logger()


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class SanitizerExecutor:
    """
    Runs pipeline of one sanitizer:
    coverage check -> bulk operation | (prune step -> record loop) -> verification
    """

    def __init__(
        self,
        sanitizer: Type[Sanitizer],
        db: Database,
        strict: bool = True,
        dry_run: bool = False,
        continue_on_error: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        allow_keep_undefined: bool = True,
    ):
        self.sanitizer = sanitizer
        self.db = db
        self.strict = strict
        self.dry_run = dry_run
        self.continue_on_error = continue_on_error
        self.batch_size = batch_size
        self.allow_keep_undefined = allow_keep_undefined
        self.state = ExecutorState.IDLE
        self.stats = RunStats(sanitizer.friendly_name)

    @property
    def name(self) -> str:
        return self.sanitizer.sanitizer_name()

    @property
    def table(self) -> str:
        return self.sanitizer.table_name

    @property
    def primary_key(self) -> str:
        return self.sanitizer.primary_key

    def _transition(self, state: ExecutorState):
        logger.debug(f"{self.name}: {self.state.value} -> {state.value}")
        self.state = state

    def _check_definition(self):
        self.sanitizer.check_keep_undefined(self.allow_keep_undefined)

        verification = self.sanitizer.verification
        if verification is not None and verification.use_default and self.sanitizer.bulk_operation is None:
            raise SanitizerDefinitionError(
                f"{self.name}: verify without a check requires a bulk operation (truncate, delete_all, destroy_all)"
            )

    def _check_coverage(self, catalog: SchemaCatalog):
        if not self.strict:
            return
        undefined = self.sanitizer.undefined_columns(catalog)
        if undefined:
            raise CoverageError(self.name, undefined)

    async def run(self) -> RunStats:
        self.stats.start()
        logger.info(f"-------------> Started {self.name} ({self.table}) {'[DRY RUN]' if self.dry_run else '[LIVE]'}")

        try:
            self._check_definition()

            catalog = await self.db.catalog()
            if not catalog.has_table(self.table):
                logger.warning(f"Skipping {self.name} (table {self.table} not found)")
                self.stats.skipped += 1
                self._transition(ExecutorState.SKIPPED)
                return self.stats

            if self.sanitizer.bulk_operation is not None:
                self._transition(ExecutorState.BULK_OPERATION)
                await self.run_bulk_operation()
            else:
                self._transition(ExecutorState.COVERAGE_CHECK)
                self._check_coverage(catalog)

                if self.sanitizer.prune_operation is not None:
                    self._transition(ExecutorState.PRUNE_STEP)
                    await self.run_prune()

                self._transition(ExecutorState.RECORD_LOOP)
                await self.run_record_loop()

            if not self.dry_run:
                self._transition(ExecutorState.VERIFY)
                await self.run_verification()

            self._transition(ExecutorState.DONE)
        except Exception as exc:
            self._transition(ExecutorState.FAILED)
            logger.error(f"Error in {self.name}: {exc}")
            raise
        finally:
            self.stats.finish(self.state)
            logger.info(
                f"<------------- Finished {self.name}: state = {self.state.value}, "
                f"processed = {self.stats.processed}, deleted = {self.stats.deleted}, "
                f"pruned = {self.stats.pruned}, elapsed: {self.stats.duration} sec"
            )

        return self.stats

    # Bulk operations

    async def run_bulk_operation(self):
        operation = self.sanitizer.bulk_operation
        scope = operation.resolve_scope()

        if self.dry_run:
            count = await self.db.count(self.table, scope)
            logger.info(f"  [DRY RUN] Would execute {operation.type.value} operation on {count} records")
            return

        if operation.type == BulkOperationType.TRUNCATE:
            count = await self.db.count(self.table)
            await self.db.truncate(self.table)
            logger.info(f"  Truncated {self.table}")
        elif operation.type == BulkOperationType.DELETE:
            count = await self.db.delete(self.table, scope)
            logger.info(f"  Deleted {count} records")
        else:
            count = await self._destroy(scope)
            logger.info(f"  Destroyed {count} records")

        self.stats.deleted += count

    async def _destroy(self, scope: Optional[Condition]) -> int:
        destroyed = 0
        while True:
            rows = await self.db.fetch_rows(self.table, scope, order_by=self.primary_key, limit=self.batch_size)
            if not rows:
                break

            batch_destroyed = 0
            for values in rows:
                record = Record(self.table, values, primary_key=self.primary_key)
                await self.sanitizer.before_destroy(self.db, record)
                batch_destroyed += await self.db.delete_row(self.table, self.primary_key, record.id)

            destroyed += batch_destroyed
            if batch_destroyed == 0 or len(rows) < self.batch_size:
                break
        return destroyed

    # Row level pipeline

    async def run_prune(self):
        operation = self.sanitizer.prune_operation
        scope = operation.resolve_scope()

        if self.dry_run:
            count = await self.db.count(self.table, scope)
            logger.info(f"  [DRY RUN] Would prune {count} records ({operation.description})")
            return

        count = await self.db.delete(self.table, scope)
        self.stats.pruned += count
        logger.info(f"  Pruned {count} records ({operation.description})")

    async def run_record_loop(self):
        after = None
        while True:
            rows = await self.db.fetch_batch(self.table, self.primary_key, after, self.batch_size)
            if not rows:
                break

            for values in rows:
                await self._process_row(Record(self.table, values, primary_key=self.primary_key))

            after = rows[-1][self.primary_key]
            if len(rows) < self.batch_size:
                break

    async def _scrub_and_verify(self, record: Record):
        await self.scrub_record(record)
        if not self.dry_run:
            await self.run_record_verification(record)

    async def _process_row(self, record: Record):
        try:
            if self.continue_on_error:
                # failed row rolls back to its own savepoint, the run transaction stays usable
                async with self.db.transaction():
                    await self._scrub_and_verify(record)
            else:
                await self._scrub_and_verify(record)
        except VerificationError as exc:
            self.stats.record_error(f"ID {record.id}: {exc}")
            raise
        except Exception as exc:
            self.stats.record_error(f"ID {record.id}: {exc}")
            logger.error(f"Error in {self.name} (ID {record.id}): {exc}")
            if not self.continue_on_error:
                raise

    async def scrub_record(self, record: Record, column: Optional[str] = None) -> Any:
        """
        Computes scrubbed values for the record and persists them as one update
        :param column: persist a single column only
        :return: scrubbed values dict, or single value when column is given
        """
        result = self.sanitizer.sanitize(record, column)
        values: Dict[str, Any] = {column: result} if column is not None else result

        self.stats.processed += 1
        detail = f"ID {record.id}" + (f".{column}" if column else "")

        if self.dry_run:
            self.stats.skipped += 1
            logger.debug(f"    skipped {detail} (dry run)")
            return result

        await self.db.update_row(self.table, self.primary_key, record.id, values)
        for name, value in values.items():
            record.write_attribute(name, value)

        self.stats.sanitized += 1
        logger.debug(f"    sanitized {detail}")
        return result

    async def run_record_verification(self, record: Record):
        verification = self.sanitizer.record_verification
        if verification is None:
            return

        # check the persisted state, not the computed values
        fresh = await self.db.fetch_row(self.table, self.primary_key, record.id)
        if fresh is not None:
            record.reload(fresh)

        if not await _resolve(verification.check(record)):
            message = verification.message or f"Record verification failed for {self.name} (ID: {record.id})"
            logger.error(f"VERIFICATION FAILED: {message}")
            raise VerificationError(message)

    # Verification

    async def _default_verification(self) -> bool:
        operation = self.sanitizer.bulk_operation
        if operation.type == BulkOperationType.TRUNCATE or not operation.scoped:
            return await self.db.count(self.table) == 0
        return await self.db.count(self.table, operation.resolve_scope()) == 0

    async def run_verification(self):
        verification = self.sanitizer.verification
        if verification is None:
            return

        if verification.use_default:
            passed = await self._default_verification()
        else:
            result = await _resolve(verification.check(Table(self.db, self.table)))
            if isinstance(result, Condition):
                passed = await self.db.count(self.table, result) == 0
            else:
                passed = bool(result)

        if not passed:
            message = verification.message or f"Verification failed for {self.name}"
            logger.error(f"VERIFICATION FAILED: {message}")
            raise VerificationError(message)

        logger.info("  Verification passed")
