import unittest
from datetime import timedelta

from pg_scrub.common.config import PruningConfig, ScrubConfig
from pg_scrub.common.enums import ExecutorState
from pg_scrub.common.errors import PruningRollbackError, UnknownSanitizerError, VerificationError
from pg_scrub.registry import SanitizerRegistry
from pg_scrub.runner import Runner, render_summary
from pg_scrub.sanitizer import Sanitizer, verify
from tests.sanitizers import NOW, CommentSanitizer, EventSanitizer, UserSanitizer, users_db


class BrokenCommentSanitizer(Sanitizer):
    table_name = "comments"
    friendly_name = "z_comments"
    keep = ("user_id", "body", "spam")
    verification = verify(lambda table: False, "boom")


def make_db():
    db = users_db()
    db.create_table("comments", ["id", "user_id", "body", "spam", "created_at"], [
        {"id": 1, "user_id": 1, "body": "spam spam", "spam": True, "created_at": NOW},
        {"id": 2, "user_id": 2, "body": "call 555-1234", "spam": False, "created_at": NOW - timedelta(days=800)},
    ])
    return db


class RunnerUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_01_run_all(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer, CommentSanitizer])
        summary = await Runner(db, registry, ScrubConfig()).run_all()

        self.assertEqual([stats.sanitizer for stats in summary.entities], ["comments", "users"])
        self.assertTrue(all(stats.state == ExecutorState.DONE for stats in summary.entities))
        self.assertEqual(summary.total("processed"), 4)
        self.assertEqual(summary.total("pruned"), 1)
        self.assertEqual(db.get("users", 2)["email"], "user2@example.test")

        result = summary.to_dict()
        self.assertFalse(result["dry_run"])
        self.assertEqual(result["entities"], {"comments": "done", "users": "done"})
        self.assertEqual(result["errors"], [])

    async def test_02_selected_names(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer, CommentSanitizer])
        summary = await Runner(db, registry).run(["users"])

        self.assertEqual([stats.sanitizer for stats in summary.entities], ["users"])
        self.assertEqual(db.get("comments", 2)["body"], "call 555-1234")

    async def test_03_unknown_name_runs_nothing(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer])

        with self.assertRaises(UnknownSanitizerError):
            await Runner(db, registry).run(["users", "ghosts"])

        self.assertEqual(db.updates, [])

    async def test_04_failure_rolls_back_whole_run(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer, BrokenCommentSanitizer])

        with self.assertRaises(VerificationError):
            await Runner(db, registry).run(["users", "z_comments"])

        self.assertEqual(db.get("users", 1)["email"], "user1@real.com")

    async def test_05_global_pruning_runs_first(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer])
        config = ScrubConfig(pruning=PruningConfig(older_than="1 year"))
        runner = Runner(db, registry, config, now=NOW)
        summary = await runner.run_all()

        self.assertIsNone(db.get("comments", 2))
        self.assertEqual(summary.pruned_rows, 1)

    async def test_06_pruning_disabled(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer])
        config = ScrubConfig(pruning=PruningConfig(older_than="1 year"), prune_enabled=False)
        summary = await Runner(db, registry, config, now=NOW).run_all()

        self.assertIsNotNone(db.get("comments", 2))
        self.assertEqual(summary.pruned_tables, [])

    async def test_07_pruning_rollback(self):
        db = make_db()
        db.create_table("events", ["id", "name", "user_id", "created_at"], [
            {"id": 1, "name": "signup", "user_id": 1, "created_at": NOW - timedelta(days=800)},
        ])
        registry = SanitizerRegistry([UserSanitizer, EventSanitizer])
        config = ScrubConfig(pruning=PruningConfig(older_than="1 year", on_conflict="rollback"))

        with self.assertRaises(PruningRollbackError):
            await Runner(db, registry, config, now=NOW).run_all()

        self.assertIsNotNone(db.get("comments", 2))
        self.assertEqual(db.get("users", 1)["email"], "user1@real.com")

    async def test_08_dry_run(self):
        db = make_db()
        registry = SanitizerRegistry([UserSanitizer, CommentSanitizer])
        runner = Runner(db, registry, ScrubConfig(dry_run=True))
        summary = await runner.run_all()

        self.assertEqual(runner.mode, "DRY RUN")
        self.assertEqual(db.updates, [])
        self.assertIsNotNone(db.get("comments", 1))
        self.assertIn("DRY RUN (no changes made)", render_summary(summary))


if __name__ == "__main__":
    unittest.main()
