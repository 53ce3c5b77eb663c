import asyncio
import unittest
from contextvars import ContextVar

from pg_scrub.registry import SanitizerRegistry
from pg_scrub.soft_scrubbing import (
    UNSET,
    MaskingOverlay,
    SoftScrubbingPolicy,
    current_viewer,
    reset_viewer,
    set_viewer,
    viewer_context,
    viewer_context_set,
    without_viewer_context,
)
from tests.sanitizers import UserSanitizer, user_row


class Viewer:
    def __init__(self, id, admin=False):
        self.id = id
        self.admin = admin


def make_overlay(**policy):
    return MaskingOverlay(SanitizerRegistry([UserSanitizer]), SoftScrubbingPolicy(**policy))


class ViewerContextUnitTest(unittest.TestCase):
    def test_01_unset_by_default(self):
        self.assertIs(current_viewer(), UNSET)
        self.assertFalse(viewer_context_set())

    def test_02_none_is_a_viewer(self):
        with viewer_context(None):
            self.assertTrue(viewer_context_set())
            self.assertIsNone(current_viewer())
        self.assertFalse(viewer_context_set())

    def test_03_nesting(self):
        viewer = Viewer(1)
        with viewer_context(viewer):
            with without_viewer_context():
                self.assertFalse(viewer_context_set())
            self.assertIs(current_viewer(), viewer)

    def test_04_tasks_do_not_share_viewer(self):
        async def read_viewer():
            await asyncio.sleep(0)
            return viewer_context_set()

        async def main():
            with viewer_context(Viewer(1)):
                inside = asyncio.create_task(read_viewer())
            outside = asyncio.create_task(read_viewer())
            return await inside, await outside

        self.assertEqual(asyncio.run(main()), (True, False))

    def test_05_token_api(self):
        viewer = Viewer(1)
        token = set_viewer(viewer)
        try:
            self.assertTrue(viewer_context_set())
            self.assertIs(current_viewer(), viewer)

            inner = set_viewer(None)
            self.assertIsNone(current_viewer())
            reset_viewer(inner)
            self.assertIs(current_viewer(), viewer)
        finally:
            reset_viewer(token)

        self.assertFalse(viewer_context_set())


class MaskingOverlayUnitTest(unittest.TestCase):
    def test_01_no_masking_without_context(self):
        record = make_overlay().record("users", user_row(1))
        self.assertEqual(record.email, "user1@real.com")

    def test_02_masked_inside_context(self):
        record = make_overlay().record("users", user_row(1))

        with viewer_context(Viewer(2)):
            self.assertEqual(record.email, "user1@example.test")
            self.assertNotEqual(record.first_name, "Alice")
            self.assertEqual(record.raw_email, "user1@real.com")
            self.assertEqual(record.raw_attribute("email"), "user1@real.com")
            self.assertEqual(record.role, "member")

        self.assertEqual(record.email, "user1@real.com")

    def test_03_nil_viewer_still_masks(self):
        record = make_overlay().record("users", user_row(1))
        with viewer_context(None):
            self.assertEqual(record.email, "user1@example.test")

    def test_04_protected_columns(self):
        record = make_overlay().record("users", user_row(1))
        with viewer_context(Viewer(2)):
            self.assertEqual(record.id, 1)
            self.assertEqual(record.created_at, user_row(1)["created_at"])

    def test_05_tables_without_sanitizer(self):
        record = make_overlay().record("orders", {"id": 1, "email": "buyer@real.com"})
        with viewer_context(Viewer(2)):
            self.assertEqual(record.email, "buyer@real.com")

    def test_06_disabled_overlay(self):
        overlay = MaskingOverlay(SanitizerRegistry([UserSanitizer]), enabled=False)
        record = overlay.record("users", user_row(1))
        with viewer_context(Viewer(2)):
            self.assertEqual(record.email, "user1@real.com")

    def test_07_matches_sanitize(self):
        record = make_overlay().record("users", user_row(4))
        with viewer_context(Viewer(2)):
            self.assertEqual(record.last_name, UserSanitizer.sanitize(user_row(4), "last_name"))
            self.assertEqual(record.bio, UserSanitizer.sanitize(user_row(4), "bio"))


class MaskingCacheUnitTest(unittest.TestCase):
    def test_01_cached_per_record(self):
        record = make_overlay().record("users", user_row(1))
        with viewer_context(Viewer(2)):
            first = record.first_name
            self.assertIn("first_name", record.masked_cache)
            self.assertEqual(record.first_name, first)

    def test_02_write_invalidates_column(self):
        record = make_overlay().record("users", user_row(1))
        with viewer_context(Viewer(2)):
            record.email
            record.first_name
            record.email = "changed@real.com"
            self.assertNotIn("email", record.masked_cache)
            self.assertIn("first_name", record.masked_cache)
            self.assertEqual(record.email, "user1@example.test")
        self.assertEqual(record.email, "changed@real.com")

    def test_03_reload_clears_cache(self):
        record = make_overlay().record("users", user_row(1))
        with viewer_context(Viewer(2)):
            record.first_name
            record.reload(user_row(9))
            self.assertEqual(record.masked_cache, {})
            self.assertEqual(record.email, "user9@example.test")


class SoftScrubbingPolicyUnitTest(unittest.TestCase):
    def test_01_if_and_unless_are_exclusive(self):
        with self.assertRaises(ValueError):
            SoftScrubbingPolicy(if_=lambda record, viewer: True, unless=lambda record, viewer: True)

    def test_02_unless_admin(self):
        record = make_overlay(unless=lambda record, viewer: viewer is not None and viewer.admin).record(
            "users", user_row(1)
        )

        with viewer_context(Viewer(2, admin=True)):
            self.assertEqual(record.email, "user1@real.com")
        with viewer_context(Viewer(3)):
            self.assertEqual(record.email, "user1@example.test")

    def test_03_if_not_owner(self):
        record = make_overlay(if_=lambda record, viewer: viewer is None or viewer.id != record.id).record(
            "users", user_row(1)
        )

        with viewer_context(Viewer(1)):
            self.assertEqual(record.email, "user1@real.com")
        with viewer_context(Viewer(2)):
            self.assertEqual(record.email, "user1@example.test")

    def test_04_predicate_reads_stored_values(self):
        seen = []

        def not_own_email(record, viewer):
            seen.append(record.email)
            return True

        record = make_overlay(if_=not_own_email).record("users", user_row(1))
        with viewer_context(Viewer(2)):
            self.assertEqual(record.email, "user1@example.test")

        self.assertEqual(seen, ["user1@real.com"])

    def test_05_default_context(self):
        admin = Viewer(1, admin=True)
        policy = SoftScrubbingPolicy(context=lambda: admin)

        with viewer_context(None):
            self.assertIs(policy.resolve_viewer(), admin)
        with viewer_context(Viewer(2)):
            self.assertEqual(policy.resolve_viewer().id, 2)

    def test_06_context_by_name(self):
        admin = Viewer(1, admin=True)
        policy = SoftScrubbingPolicy(lookups={"current_admin": lambda: admin})
        record = make_overlay().record("users", user_row(1))

        with viewer_context("current_admin"):
            self.assertIs(policy.resolve_viewer(record), admin)
        with viewer_context("role"):
            self.assertEqual(policy.resolve_viewer(record), "member")
        with viewer_context("nobody"):
            self.assertIsNone(policy.resolve_viewer(record))

    def test_07_context_callable_with_record(self):
        policy = SoftScrubbingPolicy(context=lambda record: f"owner of {record.id}")
        record = make_overlay().record("users", user_row(5))

        with viewer_context(None):
            self.assertEqual(policy.resolve_viewer(record), "owner of 5")

    def test_08_context_by_name_from_context_var(self):
        current_user: ContextVar = ContextVar("current_user")
        policy = SoftScrubbingPolicy(lookups={"current_user": current_user})

        with viewer_context("current_user"):
            self.assertIsNone(policy.resolve_viewer())

            admin = Viewer(1, admin=True)
            token = current_user.set(admin)
            try:
                self.assertIs(policy.resolve_viewer(), admin)
            finally:
                current_user.reset(token)

    def test_09_unless_with_context_var_viewer(self):
        current_user: ContextVar = ContextVar("current_user")
        overlay = make_overlay(
            unless=lambda record, viewer: viewer is not None and viewer.admin,
            context="current_user",
            lookups={"current_user": current_user},
        )
        record = overlay.record("users", user_row(1))

        token = current_user.set(Viewer(1, admin=True))
        try:
            with viewer_context(None):
                self.assertEqual(record.email, "user1@real.com")
        finally:
            current_user.reset(token)

        with viewer_context(None):
            self.assertEqual(record.email, "user1@example.test")


if __name__ == "__main__":
    unittest.main()
