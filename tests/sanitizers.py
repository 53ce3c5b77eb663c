from datetime import datetime, timedelta, timezone

from pg_scrub.conditions import col
from pg_scrub.generators import current_faker, fake_email, fake_or_blank, fake_phone, match_length
from pg_scrub.records import Record
from pg_scrub.sanitizer import (
    Sanitizer,
    delete_all,
    destroy_all,
    prune,
    prune_older_than,
    scrub,
    truncate,
    verify,
    verify_each,
)
from tests.memory_db import MemoryDatabase

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

USER_COLUMNS = ["id", "email", "first_name", "last_name", "phone", "bio", "role", "created_at", "updated_at"]


def different_from(value, generate):
    result = generate()
    while result == value:
        result = generate()
    return result


class UserSanitizer(Sanitizer):
    keep = ("role",)

    first_name = scrub(lambda self, value: different_from(value, current_faker().first_name))
    last_name = scrub(lambda self, value: different_from(value, current_faker().last_name))
    phone = scrub(lambda self, value: fake_or_blank(value, fake_phone))
    bio = scrub(lambda self, value: match_length(value))

    @scrub
    def email(self, value):
        return fake_email(self.record)

    record_verification = verify_each(
        lambda record: record.raw_email.endswith("@example.test"),
        "User email was not scrubbed",
    )


class SessionSanitizer(Sanitizer):
    bulk_operation = truncate(verify=True)


class AuditLogSanitizer(Sanitizer):
    table_name = "audit_logs"
    bulk_operation = delete_all(lambda: col("created_at") < NOW - timedelta(days=30), verify=True)


class CommentSanitizer(Sanitizer):
    keep = ("user_id", "spam")
    prune_operation = prune(col("spam") == True)  # noqa: E712
    verification = verify(lambda table: col("body").like("%@%"), "Comments still contain addresses")

    body = scrub(lambda self, value: match_length(value))


class NotificationSanitizer(Sanitizer):
    bulk_operation = destroy_all(col("read") == True)  # noqa: E712
    destroyed = []

    @classmethod
    async def before_destroy(cls, db, record: Record):
        cls.destroyed.append(record.id)


class EventSanitizer(Sanitizer):
    keep = ("name", "user_id")
    prune_operation = prune_older_than("1 year")


def user_row(id, **values):
    row = {
        "id": id,
        "email": f"user{id}@real.com",
        "first_name": "Alice",
        "last_name": "Smith",
        "phone": "5551234567",
        "bio": "Loves hiking and strong coffee.",
        "role": "member",
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(values)
    return row


def users_db(count: int = 3, **kwargs) -> MemoryDatabase:
    db = MemoryDatabase(**kwargs)
    db.create_table("users", USER_COLUMNS, [user_row(i) for i in range(1, count + 1)])
    return db


SANITIZERS = [
    UserSanitizer,
    SessionSanitizer,
    AuditLogSanitizer,
    CommentSanitizer,
    NotificationSanitizer,
    EventSanitizer,
]
