import unittest
from datetime import timedelta

import asyncpg

from pg_scrub.common.config import PruningConfig
from pg_scrub.common.errors import PruningConflictError, PruningRollbackError
from pg_scrub.pruner import Pruner
from pg_scrub.registry import SanitizerRegistry
from tests.memory_db import MemoryDatabase
from tests.sanitizers import NOW, EventSanitizer

TWO_YEARS_AGO = NOW - timedelta(days=730)
YESTERDAY = NOW - timedelta(days=1)


def make_db() -> MemoryDatabase:
    db = MemoryDatabase()
    db.create_table("events", ["id", "name", "user_id", "created_at"], [
        {"id": 1, "name": "signup", "created_at": TWO_YEARS_AGO},
        {"id": 2, "name": "login", "created_at": YESTERDAY},
    ])
    db.create_table("logs", ["id", "message", "created_at"], [
        {"id": 1, "message": "old", "created_at": TWO_YEARS_AGO},
        {"id": 2, "message": "new", "created_at": YESTERDAY},
    ])
    db.create_table("schema_migrations", ["version", "created_at"], [
        {"version": "1", "created_at": TWO_YEARS_AGO},
    ], primary_key="version")
    db.create_table("settings", ["key", "value"], [{"key": "a", "value": "b"}], primary_key="key")
    db.create_table("raw_imports", ["payload", "created_at"], [
        {"payload": "x", "created_at": TWO_YEARS_AGO},
    ], primary_key=None)
    return db


def ids(db: MemoryDatabase, table: str):
    return [row["id"] for row in db.rows[table]]


class PrunerUnitTest(unittest.IsolatedAsyncioTestCase):
    def pruner(self, db, registry=None, dry_run=False, **config):
        config.setdefault("older_than", "1 year")
        return Pruner(db, registry or SanitizerRegistry(), PruningConfig(**config), dry_run=dry_run, now=NOW)

    async def test_01_older_than(self):
        db = make_db()
        results = await self.pruner(db).run()

        self.assertEqual(ids(db, "events"), [2])
        self.assertEqual(ids(db, "logs"), [2])
        self.assertEqual({stats.table: stats.deleted for stats in results}, {"events": 1, "logs": 1})

    async def test_02_newer_than(self):
        db = make_db()
        await Pruner(db, SanitizerRegistry(), PruningConfig(newer_than="1 year"), now=NOW).run()

        self.assertEqual(ids(db, "events"), [1])
        self.assertEqual(ids(db, "logs"), [1])

    async def test_03_absolute_date(self):
        db = make_db()
        await self.pruner(db, older_than="2025-01-01").run()

        self.assertEqual(ids(db, "events"), [2])

    async def test_04_skips_internal_and_unbound_tables(self):
        db = make_db()
        catalog = await db.catalog()

        self.assertEqual(self.pruner(db).tables_to_prune(catalog), ["events", "logs"])
        await self.pruner(db).run()

        self.assertEqual(len(db.rows["schema_migrations"]), 1)
        self.assertEqual(len(db.rows["raw_imports"]), 1)

    async def test_05_only_and_except(self):
        db = make_db()
        catalog = await db.catalog()

        self.assertEqual(self.pruner(db, only=["logs"]).tables_to_prune(catalog), ["logs"])
        self.assertEqual(
            self.pruner(db, **{"except": ["logs"]}).tables_to_prune(catalog),
            ["events"],
        )

    async def test_06_custom_column(self):
        db = MemoryDatabase()
        db.create_table("visits", ["id", "visited_at"], [
            {"id": 1, "visited_at": TWO_YEARS_AGO},
            {"id": 2, "visited_at": YESTERDAY},
        ])
        await self.pruner(db, column="visited_at").run()

        self.assertEqual(ids(db, "visits"), [2])

    async def test_07_dry_run_counts_only(self):
        db = make_db()
        results = await self.pruner(db, dry_run=True).run()

        self.assertEqual(ids(db, "events"), [1, 2])
        self.assertEqual(sum(stats.deleted for stats in results), 2)

    async def test_08_referenced_rows_are_skipped(self):
        db = MemoryDatabase()
        db.create_table("users", ["id", "created_at"], [{"id": 1, "created_at": TWO_YEARS_AGO}])
        db.create_table("comments", ["id", "user_id", "created_at"], [
            {"id": 1, "user_id": 1, "created_at": YESTERDAY},
        ])
        db.add_foreign_key("comments", "user_id", "users")

        results = await self.pruner(db).run()

        self.assertEqual(ids(db, "users"), [1])
        by_table = {stats.table: stats for stats in results}
        self.assertEqual(by_table["users"].skipped_reason, "dependencies")
        self.assertEqual(by_table["users"].deleted, 0)
        self.assertIsNone(by_table["comments"].skipped_reason)

    async def test_09_failed_table_does_not_stop_the_pass(self):
        db = make_db()
        db.failures[("delete", "events")] = asyncpg.UndefinedFunctionError(
            "operator does not exist: text < timestamp with time zone"
        )

        async with db.transaction():
            results = await self.pruner(db).run()

        self.assertFalse(db.aborted)
        self.assertEqual(ids(db, "events"), [1, 2])
        self.assertEqual(ids(db, "logs"), [2])

        by_table = {stats.table: stats for stats in results}
        self.assertIn("operator does not exist", by_table["events"].skipped_reason)
        self.assertEqual(by_table["events"].deleted, 0)
        self.assertEqual(by_table["logs"].deleted, 1)


class PruningConflictUnitTest(unittest.IsolatedAsyncioTestCase):
    def pruner(self, db, on_conflict):
        config = PruningConfig(older_than="1 year", on_conflict=on_conflict)
        return Pruner(db, SanitizerRegistry([EventSanitizer]), config, now=NOW)

    async def test_01_conflicts(self):
        db = make_db()
        self.assertEqual(self.pruner(db, "warn").conflicts(await db.catalog()), ["events"])

    async def test_02_warn_leaves_table_to_sanitizer(self):
        db = make_db()
        results = await self.pruner(db, "warn").run()

        self.assertEqual([stats.table for stats in results], ["logs"])
        self.assertEqual(ids(db, "events"), [1, 2])
        self.assertEqual(ids(db, "logs"), [2])

    async def test_03_raise(self):
        db = make_db()
        with self.assertRaises(PruningConflictError) as ctx:
            await self.pruner(db, "raise").run()

        self.assertEqual(ctx.exception.tables, ["events"])
        self.assertEqual(ids(db, "logs"), [1, 2])

    async def test_04_rollback(self):
        db = make_db()
        with self.assertRaises(PruningRollbackError):
            await self.pruner(db, "rollback").run()

        self.assertEqual(ids(db, "logs"), [1, 2])


if __name__ == "__main__":
    unittest.main()
