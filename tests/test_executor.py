import unittest
from datetime import timedelta

import asyncpg

from pg_scrub.common.enums import ExecutorState
from pg_scrub.common.errors import CoverageError, SanitizerDefinitionError, VerificationError
from pg_scrub.executor import SanitizerExecutor
from pg_scrub.records import Record
from pg_scrub.sanitizer import Sanitizer, scrub, verify
from tests.memory_db import MemoryDatabase
from tests.sanitizers import (
    NOW,
    USER_COLUMNS,
    AuditLogSanitizer,
    CommentSanitizer,
    NotificationSanitizer,
    SessionSanitizer,
    UserSanitizer,
    user_row,
    users_db,
)


class FlakyUserSanitizer(UserSanitizer):
    table_name = "users"

    @scrub
    def bio(self, value):
        if self.record.id == 2:
            raise ValueError("broken bio")
        return "scrubbed"


class LeakyUserSanitizer(UserSanitizer):
    table_name = "users"
    email = scrub(lambda self, value: value)


class RecordLoopUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_01_scrubs_every_row(self):
        db = users_db()
        stats = await SanitizerExecutor(UserSanitizer, db).run()

        row = db.get("users", 1)
        self.assertEqual(row["email"], "user1@example.test")
        self.assertNotEqual(row["first_name"], "Alice")
        self.assertNotEqual(row["last_name"], "Smith")
        self.assertEqual(row["id"], 1)
        self.assertEqual(row["created_at"], NOW)
        self.assertEqual(row["role"], "member")

        self.assertEqual(stats.state, ExecutorState.DONE)
        self.assertEqual(stats.processed, 3)
        self.assertEqual(stats.sanitized, 3)
        self.assertEqual(stats.errored, 0)

    async def test_02_results_match_sanitize(self):
        db = users_db(count=1)
        expected = UserSanitizer.sanitize(user_row(1))
        await SanitizerExecutor(UserSanitizer, db).run()

        row = db.get("users", 1)
        for column, value in expected.items():
            self.assertEqual(row[column], value)

    async def test_03_dry_run_changes_nothing(self):
        db = users_db()
        stats = await SanitizerExecutor(UserSanitizer, db, dry_run=True).run()

        self.assertEqual(db.updates, [])
        self.assertEqual(db.get("users", 1)["email"], "user1@real.com")
        self.assertEqual(stats.processed, 3)
        self.assertEqual(stats.skipped, 3)
        self.assertEqual(stats.sanitized, 0)

    async def test_04_batches(self):
        db = users_db(count=7)
        stats = await SanitizerExecutor(UserSanitizer, db, batch_size=3).run()

        self.assertEqual(stats.processed, 7)
        self.assertEqual(db.get("users", 7)["email"], "user7@example.test")

    async def test_05_scrub_single_column(self):
        db = users_db(count=1)
        executor = SanitizerExecutor(UserSanitizer, db)
        record = Record("users", user_row(1))

        value = await executor.scrub_record(record, "email")

        self.assertEqual(value, "user1@example.test")
        self.assertEqual(db.updates, [("users", 1, {"email": "user1@example.test"})])
        self.assertEqual(db.get("users", 1)["first_name"], "Alice")
        self.assertEqual(record.email, "user1@example.test")

    async def test_06_missing_table_is_skipped(self):
        db = MemoryDatabase()
        stats = await SanitizerExecutor(UserSanitizer, db).run()

        self.assertEqual(stats.state, ExecutorState.SKIPPED)
        self.assertEqual(stats.skipped, 1)


class CoverageUnitTest(unittest.IsolatedAsyncioTestCase):
    def make_db(self):
        db = MemoryDatabase()
        db.create_table("users", USER_COLUMNS + ["nickname"], [user_row(1, nickname="ally")])
        return db

    async def test_01_strict_mode_rejects_undefined_columns(self):
        db = self.make_db()
        executor = SanitizerExecutor(UserSanitizer, db)

        with self.assertRaises(CoverageError) as ctx:
            await executor.run()

        self.assertEqual(ctx.exception.columns, ["nickname"])
        self.assertIn("UserSanitizer is missing definitions for: nickname", str(ctx.exception))
        self.assertEqual(executor.state, ExecutorState.FAILED)
        self.assertEqual(db.updates, [])

    async def test_02_non_strict_mode_scrubs_anyway(self):
        db = self.make_db()
        await SanitizerExecutor(UserSanitizer, db, strict=False).run()

        row = db.get("users", 1)
        self.assertEqual(row["email"], "user1@example.test")
        self.assertEqual(row["nickname"], "ally")

    async def test_03_default_verify_needs_bulk_operation(self):
        class CheckedUserSanitizer(UserSanitizer):
            table_name = "users"
            verification = verify()

        with self.assertRaises(SanitizerDefinitionError):
            await SanitizerExecutor(CheckedUserSanitizer, users_db()).run()

    async def test_04_keep_undefined(self):
        class DevUserSanitizer(Sanitizer):
            table_name = "users"
            keep_undefined = True
            email = scrub(lambda self, value: "hidden")

        db = self.make_db()
        stats = await SanitizerExecutor(DevUserSanitizer, db).run()

        row = db.get("users", 1)
        self.assertEqual(stats.state, ExecutorState.DONE)
        self.assertEqual(row["email"], "hidden")
        self.assertEqual(row["first_name"], "Alice")
        self.assertEqual(row["nickname"], "ally")

        executor = SanitizerExecutor(DevUserSanitizer, self.make_db(), allow_keep_undefined=False)
        with self.assertRaises(SanitizerDefinitionError):
            await executor.run()
        self.assertEqual(executor.state, ExecutorState.FAILED)


class BulkOperationUnitTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        NotificationSanitizer.destroyed.clear()

    async def test_01_truncate(self):
        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token"], [{"id": 1, "token": "a"}, {"id": 2, "token": "b"}])

        stats = await SanitizerExecutor(SessionSanitizer, db).run()

        self.assertEqual(db.truncated, ["sessions"])
        self.assertEqual(db.rows["sessions"], [])
        self.assertEqual(stats.deleted, 2)
        self.assertEqual(stats.state, ExecutorState.DONE)

    async def test_02_scoped_delete(self):
        db = MemoryDatabase()
        db.create_table("audit_logs", ["id", "action", "created_at"], [
            {"id": 1, "action": "login", "created_at": NOW - timedelta(days=60)},
            {"id": 2, "action": "logout", "created_at": NOW - timedelta(days=1)},
        ])

        stats = await SanitizerExecutor(AuditLogSanitizer, db).run()

        self.assertEqual(stats.deleted, 1)
        self.assertIsNone(db.get("audit_logs", 1))
        self.assertIsNotNone(db.get("audit_logs", 2))

    async def test_03_destroy_calls_hook_for_each_row(self):
        db = MemoryDatabase()
        db.create_table("notifications", ["id", "read", "body"], [
            {"id": 1, "read": True, "body": "a"},
            {"id": 2, "read": False, "body": "b"},
            {"id": 3, "read": True, "body": "c"},
        ])

        stats = await SanitizerExecutor(NotificationSanitizer, db, batch_size=1).run()

        self.assertEqual(NotificationSanitizer.destroyed, [1, 3])
        self.assertEqual([row["id"] for row in db.rows["notifications"]], [2])
        self.assertEqual(stats.deleted, 2)

    async def test_04_dry_run_only_counts(self):
        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token"], [{"id": 1, "token": "a"}])

        stats = await SanitizerExecutor(SessionSanitizer, db, dry_run=True).run()

        self.assertEqual(db.truncated, [])
        self.assertEqual(len(db.rows["sessions"]), 1)
        self.assertEqual(stats.deleted, 0)

    async def test_05_bulk_operation_ignores_coverage(self):
        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token", "user_agent"], [{"id": 1}])

        stats = await SanitizerExecutor(SessionSanitizer, db, strict=True).run()

        self.assertEqual(stats.state, ExecutorState.DONE)


class PruneStepUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_01_prune_then_scrub(self):
        db = MemoryDatabase()
        db.create_table("comments", ["id", "user_id", "body", "spam", "created_at"], [
            {"id": 1, "user_id": 1, "body": "buy now", "spam": True},
            {"id": 2, "user_id": 1, "body": "write me at bob@real.com", "spam": False},
        ])

        stats = await SanitizerExecutor(CommentSanitizer, db).run()

        self.assertEqual(stats.pruned, 1)
        self.assertEqual(stats.processed, 1)
        self.assertIsNone(db.get("comments", 1))
        self.assertNotIn("@", db.get("comments", 2)["body"])


class VerificationUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_01_failed_check_raises(self):
        class StrictSessionSanitizer(Sanitizer):
            table_name = "sessions"
            keep = ("token",)
            verification = verify(lambda table: False, "Sessions are still there")

        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token"], [{"id": 1, "token": "a"}])
        executor = SanitizerExecutor(StrictSessionSanitizer, db)

        with self.assertRaises(VerificationError) as ctx:
            await executor.run()

        self.assertEqual(str(ctx.exception), "Sessions are still there")
        self.assertEqual(executor.state, ExecutorState.FAILED)

    async def test_02_async_check(self):
        async def no_tokens(table):
            return await table.count() == 0

        class AsyncSessionSanitizer(Sanitizer):
            table_name = "sessions"
            friendly_name = "async_sessions"
            keep = ("token",)
            verification = verify(no_tokens)

        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token"], [{"id": 1, "token": "a"}])

        with self.assertRaises(VerificationError) as ctx:
            await SanitizerExecutor(AsyncSessionSanitizer, db).run()
        self.assertEqual(str(ctx.exception), "Verification failed for AsyncSessionSanitizer")

    async def test_03_skipped_in_dry_run(self):
        class StrictSessionSanitizer(Sanitizer):
            table_name = "sessions"
            keep = ("token",)
            verification = verify(lambda table: False)

        db = MemoryDatabase()
        db.create_table("sessions", ["id", "token"], [{"id": 1, "token": "a"}])
        stats = await SanitizerExecutor(StrictSessionSanitizer, db, dry_run=True).run()

        self.assertEqual(stats.state, ExecutorState.DONE)

    async def test_04_record_verification_aborts_despite_continue_on_error(self):
        db = users_db()
        executor = SanitizerExecutor(LeakyUserSanitizer, db, continue_on_error=True)

        with self.assertRaises(VerificationError) as ctx:
            await executor.run()

        self.assertEqual(str(ctx.exception), "User email was not scrubbed")
        self.assertEqual(executor.stats.errored, 1)
        self.assertEqual(executor.stats.processed, 1)


class ErrorHandlingUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_01_error_aborts_by_default(self):
        db = users_db()
        executor = SanitizerExecutor(FlakyUserSanitizer, db)

        with self.assertRaises(ValueError):
            await executor.run()

        self.assertEqual(executor.state, ExecutorState.FAILED)
        self.assertEqual(executor.stats.errors, ["ID 2: broken bio"])

    async def test_02_continue_on_error(self):
        db = users_db()
        stats = await SanitizerExecutor(FlakyUserSanitizer, db, continue_on_error=True).run()

        self.assertEqual(stats.state, ExecutorState.DONE)
        self.assertEqual(stats.errored, 1)
        self.assertEqual(stats.sanitized, 2)
        self.assertEqual(db.get("users", 1)["bio"], "scrubbed")
        self.assertEqual(db.get("users", 2)["email"], "user2@real.com")
        self.assertEqual(db.get("users", 3)["bio"], "scrubbed")

    async def test_03_storage_error_keeps_run_transaction_usable(self):
        db = users_db()
        db.failures[("update", "users", 2)] = asyncpg.StringDataRightTruncationError(
            "value too long for type character varying(20)"
        )

        async with db.transaction():
            stats = await SanitizerExecutor(UserSanitizer, db, continue_on_error=True).run()

        self.assertEqual(stats.state, ExecutorState.DONE)
        self.assertEqual(stats.errored, 1)
        self.assertEqual(stats.sanitized, 2)
        self.assertFalse(db.aborted)
        self.assertEqual(db.get("users", 1)["email"], "user1@example.test")
        self.assertEqual(db.get("users", 2)["email"], "user2@real.com")
        self.assertEqual(db.get("users", 3)["email"], "user3@example.test")

    async def test_04_storage_error_aborts_without_continue_on_error(self):
        db = users_db()
        db.failures[("update", "users", 2)] = asyncpg.StringDataRightTruncationError(
            "value too long for type character varying(20)"
        )

        with self.assertRaises(asyncpg.StringDataRightTruncationError):
            async with db.transaction():
                await SanitizerExecutor(UserSanitizer, db).run()

        self.assertEqual(db.get("users", 1)["email"], "user1@real.com")


if __name__ == "__main__":
    unittest.main()
