"""
Synthetic replacement values.

Generators draw randomness from a per-thread Faker instance. Inside ``seeded(seed)``
that instance is reseeded, so a row scrubbed with its own identifier as seed always
gets the same replacement values.
"""
import json
import string
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import bcrypt
from faker import Faker

from pg_scrub.common.constants import DEFAULT_TEST_EMAIL_DOMAIN
from pg_scrub.common.errors import InvalidInputError
from pg_scrub.common.utils import simple_slugify, singularize

ALPHANUMERIC = string.ascii_lowercase + string.digits
BCRYPT_ALPHABET = "./ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
# last salt character carries 2 meaningful bits only
BCRYPT_SALT_LAST_CHARS = ".Oeu"
LENGTH_TOLERANCE = 10

_local = threading.local()


def current_faker() -> Faker:
    faker = getattr(_local, "faker", None)
    if faker is None:
        faker = Faker()
        faker.seed_instance(0)
        _local.faker = faker
    return faker


@contextmanager
def seeded(seed: Any):
    """
    Makes generators deterministic for the given seed, restoring random state on exit
    """
    faker = current_faker()
    state = faker.random.getstate()
    faker.seed_instance(seed)
    try:
        yield faker
    finally:
        faker.random.setstate(state)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def fake_email(
    record_or_identity: Any = None,
    domain: str = DEFAULT_TEST_EMAIL_DOMAIN,
    prefix: Optional[str] = None,
    unique_id: Any = None,
) -> str:
    """
    Builds "<prefix><identity>@<domain>" address
    :param record_or_identity: record (its id is used) or the identity itself
    :param domain: mail domain, never a real one
    :param prefix: defaults to singular slug of the record table, "user" without a record
    :param unique_id: explicit identity, overrides record id
    """
    record = record_or_identity if hasattr(record_or_identity, "table") and hasattr(record_or_identity, "id") else None
    identity = unique_id
    if identity is None:
        identity = record.id if record is not None else record_or_identity

    if _is_blank(identity):
        raise InvalidInputError("fake_email requires a unique_id or a record with id")

    if prefix is None:
        if record is not None:
            table_name = record.table.rsplit(".", 1)[-1]
            prefix = simple_slugify(singularize(table_name)).replace("-", "_")
        else:
            prefix = "user"

    return f"{prefix}{identity}@{domain}"


def fake_phone(digits: int = 10) -> str:
    if digits < 1:
        raise InvalidInputError(f"Phone must have at least one digit, got {digits}")
    return current_faker().numerify("#" * digits)


def fake_password(plaintext: str = "password123", cost: int = 4) -> str:
    """
    Bcrypt hash with low work factor. Salt comes from the seeded random, so hashes are reproducible
    """
    random = current_faker().random
    salt_chars = [random.choice(BCRYPT_ALPHABET) for _ in range(21)]
    salt_chars.append(random.choice(BCRYPT_SALT_LAST_CHARS))
    salt = f"$2b${cost:02d}${''.join(salt_chars)}".encode()
    return bcrypt.hashpw(plaintext.encode(), salt).decode()


def fake_id(n: int, prefix: str = "ID") -> str:
    return f"{prefix}{int(n):06d}"


def fake_or_blank(old_value: Any, new_value: Any) -> Any:
    """
    Replacement only for present values: blank stays blank
    """
    if _is_blank(old_value):
        return None
    return new_value() if callable(new_value) else new_value


def _truncate(text: str, length: int, omission: str = "...") -> str:
    if len(text) <= length:
        return text
    return text[:max(length - len(omission), 0)] + omission


def _characters(faker: Faker, length: int) -> str:
    return "".join(faker.random.choice(ALPHANUMERIC) for _ in range(length))


LENGTH_STRATEGIES: Dict[str, Callable[[Faker, int], str]] = {
    "sentence": lambda faker, length: faker.sentence(nb_words=max(length // 5, 3), variable_nb_words=False),
    "paragraph": lambda faker, length: faker.paragraph(nb_sentences=max(length // 50, 2), variable_nb_sentences=False),
    "word": lambda faker, length: faker.word(),
    "characters": _characters,
}


def match_length(value: Any, use: Union[str, Callable[[], Any]] = "sentence") -> Optional[str]:
    """
    Text of about the same length as value (at most LENGTH_TOLERANCE characters longer)
    :param value: original value, empty or None gives None
    :param use: "sentence", "paragraph", "word", "characters" or function without arguments
    """
    length = len(str(value)) if value is not None else 0
    if length == 0:
        return None

    if callable(use):
        text = use()
    elif isinstance(use, str):
        strategy = LENGTH_STRATEGIES.get(use, LENGTH_STRATEGIES["sentence"])
        text = strategy(current_faker(), length)
    else:
        raise InvalidInputError(f"use must be a strategy name or a function, got {type(use).__name__}")

    return _truncate(str(text), length + LENGTH_TOLERANCE)


KeepPath = Union[str, Sequence[Any]]


def _normalize_keep_paths(keep: Iterable[KeepPath]) -> List[Tuple[str, ...]]:
    paths = []
    for path in keep or ():
        if isinstance(path, str):
            paths.append(tuple(path.split(".")))
        elif isinstance(path, (list, tuple)):
            paths.append(tuple(str(segment) for segment in path))
        else:
            raise InvalidInputError(f"Keep paths must be strings or lists, got {type(path).__name__}")
    return paths


class _JsonScrubber:

    def __init__(self, faker: Faker, keep_paths: List[Tuple[str, ...]], preserve_keys: bool):
        self.faker = faker
        self.keep_paths = keep_paths
        self.preserve_keys = preserve_keys

    def _kept(self, path: Tuple[str, ...]) -> bool:
        return path in self.keep_paths

    def _on_kept_path(self, path: Tuple[str, ...]) -> bool:
        return any(keep_path[:len(path)] == path for keep_path in self.keep_paths)

    def _new_key(self, used: set) -> str:
        key = self.faker.word()
        suffix = 1
        candidate = key
        while candidate in used:
            suffix += 1
            candidate = f"{key}_{suffix}"
        return candidate

    def scrub(self, obj: Any, path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            result = {}
            for key, value in obj.items():
                child_path = path + (str(key),)
                new_key = key
                if not self.preserve_keys and not self._on_kept_path(child_path):
                    new_key = self._new_key(set(result) | set(obj))
                result[new_key] = self.scrub(value, child_path)
            return result

        if isinstance(obj, list):
            return [self.scrub(value, path + (str(index),)) for index, value in enumerate(obj)]

        # bool is a subclass of int, check it first
        if isinstance(obj, bool) or obj is None:
            return obj

        if isinstance(obj, str):
            return obj if self._kept(path) else self.faker.word()

        if isinstance(obj, (int, float)):
            return obj if self._kept(path) else 0

        return None


def fake_json(value: Any, preserve_keys: bool = True, keep: Iterable[KeepPath] = ()) -> Any:
    """
    Replaces JSON leaf values keeping the structure: strings become random words,
    numbers become 0, booleans and nulls stay. Objects keep their keys and arrays
    their length unless preserve_keys is False, then keys are replaced too
    (except keys leading to kept paths).

    :param value: dict, list or JSON string. A JSON string gives back a JSON string,
        not the decoded structure. Scalar documents such as '"alice@real.com"' are one leaf
    :param keep: paths of leaves left untouched, "user.email" or ["items", 0, "sku"]
    :raises TypeError: value of unsupported type
    :raises json.JSONDecodeError: malformed JSON string
    """
    if value is None:
        return None

    if not isinstance(value, (str, dict, list)):
        raise TypeError(f"fake_json expects dict, list or JSON string, got {type(value).__name__}")

    scrubber = _JsonScrubber(current_faker(), _normalize_keep_paths(keep), preserve_keys)
    if isinstance(value, str):
        return json.dumps(scrubber.scrub(json.loads(value)), ensure_ascii=False)
    return scrubber.scrub(value)
