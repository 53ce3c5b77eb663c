"""
Declarative per-table sanitizers.

    class UserSanitizer(Sanitizer):
        keep = ("role", "last_sign_in_at")

        first_name = scrub(lambda self, value: current_faker().first_name())
        last_name = scrub(lambda self, value: current_faker().last_name())

        @scrub
        def email(self, value):
            # bare names give scrubbed values, raw_* gives stored ones
            return fake_email(self.record, prefix=f"{self.first_name}.{self.last_name}.".lower())

Table and friendly name are inferred from the class name (UserSanitizer -> "users")
unless declared with ``table_name`` / ``friendly_name``.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pg_scrub.common.constants import DEFAULT_PRIMARY_KEY, DEFAULT_TIMESTAMP_COLUMN, PROTECTED_COLUMNS
from pg_scrub.common.enums import BulkOperationType
from pg_scrub.common.errors import (
    CircularReferenceError,
    ConfigurationError,
    MissingTableError,
    SanitizerDefinitionError,
)
from pg_scrub.common.utils import Age, format_age, parse_age, pluralize, resolve_cutoff, underscore
from pg_scrub.conditions import Compare, Condition
from pg_scrub.generators import seeded
from pg_scrub.records import Record
from pg_scrub.schema import Database, SchemaCatalog

SANITIZER_SUFFIX = "Sanitizer"

# set on every instance, shadows a column of the same name
INSTANCE_ATTRIBUTES = ("record",)

Scope = Union[Condition, Callable[[], Condition]]


class _Missing:
    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


def resolve_scope(scope: Optional[Scope]) -> Optional[Condition]:
    if scope is None or isinstance(scope, Condition):
        return scope
    return scope()


@dataclass(frozen=True)
class BulkOperation:
    type: BulkOperationType
    scope: Optional[Scope] = None
    verify: bool = False

    def resolve_scope(self) -> Optional[Condition]:
        return resolve_scope(self.scope)

    @property
    def scoped(self) -> bool:
        return self.scope is not None


@dataclass(frozen=True)
class PruneOperation:
    scope: Scope
    description: str = "custom scope"

    def resolve_scope(self) -> Condition:
        return resolve_scope(self.scope)


@dataclass(frozen=True)
class Verification:
    """
    Table level check. Without a check the default one for the bulk operation is used
    """
    check: Optional[Callable[..., Any]] = None
    message: Optional[str] = None

    @property
    def use_default(self) -> bool:
        return self.check is None


@dataclass(frozen=True)
class RecordVerification:
    check: Callable[[Record], Union[bool, Awaitable[bool]]]
    message: Optional[str] = None


def truncate(verify: bool = False) -> BulkOperation:
    """
    TRUNCATE: removes every row and restarts identity counters, no scope allowed
    """
    return BulkOperation(BulkOperationType.TRUNCATE, verify=verify)


def delete_all(scope: Optional[Scope] = None, verify: bool = False) -> BulkOperation:
    """
    Single DELETE statement honoring optional scope, no per-row hooks
    """
    return BulkOperation(BulkOperationType.DELETE, scope=scope, verify=verify)


def destroy_all(scope: Optional[Scope] = None, verify: bool = False) -> BulkOperation:
    """
    Row by row delete calling before_destroy hook of the sanitizer for every row
    """
    return BulkOperation(BulkOperationType.DESTROY, scope=scope, verify=verify)


def prune(scope: Scope) -> PruneOperation:
    if scope is None:
        raise SanitizerDefinitionError("prune requires a scope")
    return PruneOperation(scope)


def _prune_by_age(age: Age, column: str, op: str, label: str) -> PruneOperation:
    try:
        parse_age(age)
    except ConfigurationError as exc:
        raise SanitizerDefinitionError(str(exc)) from exc

    # cutoff is resolved when the prune runs, not when the class is defined
    return PruneOperation(
        scope=lambda: Compare(column, op, resolve_cutoff(age), cast="timestamptz"),
        description=f"{column} {label} {format_age(age)}",
    )


def prune_older_than(age: Age, column: str = DEFAULT_TIMESTAMP_COLUMN) -> PruneOperation:
    return _prune_by_age(age, column, "<", "older than")


def prune_newer_than(age: Age, column: str = DEFAULT_TIMESTAMP_COLUMN) -> PruneOperation:
    return _prune_by_age(age, column, ">=", "newer than")


def verify(check: Optional[Callable[..., Any]] = None, message: Optional[str] = None) -> Verification:
    """
    :param check: receives Table handle, returns bool or Condition (passes when nothing matches).
        Coroutine functions are awaited
    :param message: error message on failure
    """
    return Verification(check=check, message=message)


def verify_each(check: Callable[[Record], Any], message: Optional[str] = None) -> RecordVerification:
    if check is None:
        raise SanitizerDefinitionError("verify_each requires a check")
    return RecordVerification(check=check, message=message)


class scrub:
    """
    Scrub rule for a column: function (sanitizer, raw value) -> replacement.

    Used as ``name = scrub(func)``, ``@scrub`` or ``@scrub(column="real_name")``.
    Read on a sanitizer instance it gives the scrubbed value of the column.
    """

    def __init__(self, func: Optional[Callable[[Any, Any], Any]] = None, *, column: Optional[str] = None):
        self.func = func
        self.column = column
        self.attr_name: Optional[str] = None

    def __call__(self, func: Callable[[Any, Any], Any]) -> "scrub":
        if self.func is not None:
            raise SanitizerDefinitionError("Scrub rule already has a function")
        self.func = func
        return self

    def __set_name__(self, owner, name: str):
        self.attr_name = name
        if self.column is None:
            self.column = name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.scrubbed(self.column)

    def __repr__(self):
        return f"<scrub {self.column}>"


def _normalize_columns(value: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(dict.fromkeys(value))


class Sanitizer:
    table_name: Optional[str] = None
    friendly_name: Optional[str] = None
    primary_key: str = DEFAULT_PRIMARY_KEY
    keep: Union[str, Tuple[str, ...]] = ()
    # development only: keeps every column not declared by scrub or keep
    keep_undefined: bool = False

    bulk_operation: Optional[BulkOperation] = None
    prune_operation: Optional[PruneOperation] = None
    verification: Optional[Verification] = None
    record_verification: Optional[RecordVerification] = None

    _rules: Dict[str, scrub] = {}
    _kept: Tuple[str, ...] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        inferred = pluralize(underscore(cls._base_name()))
        if "table_name" not in cls.__dict__:
            cls.table_name = inferred
        if "friendly_name" not in cls.__dict__:
            cls.friendly_name = inferred

        rules = dict(cls._rules)
        for value in cls.__dict__.values():
            if isinstance(value, scrub):
                if value.func is None:
                    raise SanitizerDefinitionError(f"{cls.__name__}: scrub rule for {value.column} has no function")
                rules[value.column] = value
        cls._rules = rules
        cls._kept = _normalize_columns(cls.keep)

        overlap = [column for column in cls._kept if column in rules]
        if overlap:
            raise SanitizerDefinitionError(
                f"{cls.__name__}: columns can't be both scrubbed and kept: {', '.join(overlap)}"
            )

        cls._check_member_names()

        cls._check_declarations()

        if cls.bulk_operation is not None and cls.bulk_operation.verify and cls.verification is None:
            cls.verification = Verification()

    @classmethod
    def _base_name(cls) -> str:
        name = cls.__name__
        if name.endswith(SANITIZER_SUFFIX) and name != SANITIZER_SUFFIX:
            name = name[:-len(SANITIZER_SUFFIX)]
        return name

    @classmethod
    def _check_member_names(cls):
        reserved = set(dir(Sanitizer)) | set(INSTANCE_ATTRIBUTES)
        shadowing = [column for column in list(cls._rules) + list(cls._kept) if column in reserved]
        if shadowing:
            raise SanitizerDefinitionError(
                f"{cls.__name__}: columns shadow Sanitizer members and can't be referenced by name: "
                f"{', '.join(shadowing)}"
            )

    @classmethod
    def _check_declarations(cls):
        expected = (
            ("bulk_operation", BulkOperation),
            ("prune_operation", PruneOperation),
            ("verification", Verification),
            ("record_verification", RecordVerification),
        )
        for attribute, expected_type in expected:
            value = getattr(cls, attribute)
            if value is not None and not isinstance(value, expected_type):
                raise SanitizerDefinitionError(
                    f"{cls.__name__}.{attribute} must be {expected_type.__name__}, got {type(value).__name__}"
                )

        bulk = cls.bulk_operation
        if bulk is not None and bulk.type == BulkOperationType.TRUNCATE and bulk.scope is not None:
            raise SanitizerDefinitionError(f"{cls.__name__}: truncate does not accept a scope")

    # Definition queries

    @classmethod
    def sanitizer_name(cls) -> str:
        return cls.__name__

    @classmethod
    def rule_for(cls, column: str) -> Optional[scrub]:
        return cls._rules.get(column)

    @classmethod
    def is_scrubbed_column(cls, column: str) -> bool:
        return column in cls._rules

    @classmethod
    def scrubbed_columns(cls) -> List[str]:
        return list(cls._rules)

    @classmethod
    def kept_columns(cls, catalog: Optional[SchemaCatalog] = None) -> List[str]:
        """
        Declared kept columns; with keep_undefined and a catalog also every undeclared column
        """
        kept = list(cls._kept)
        if cls.keep_undefined and catalog is not None:
            kept += cls._undeclared_columns(catalog)
        return kept

    @classmethod
    def defined_columns(cls, catalog: Optional[SchemaCatalog] = None) -> List[str]:
        return cls.scrubbed_columns() + cls.kept_columns(catalog)

    @classmethod
    def protected_columns(cls) -> Tuple[str, ...]:
        if cls.primary_key in PROTECTED_COLUMNS:
            return PROTECTED_COLUMNS
        return PROTECTED_COLUMNS + (cls.primary_key,)

    @classmethod
    def _undeclared_columns(cls, catalog: SchemaCatalog) -> List[str]:
        declared = set(cls.scrubbed_columns()) | set(cls._kept)
        protected = cls.protected_columns()
        return [
            column for column in catalog.columns(cls.table_name)
            if column not in declared and column not in protected
        ]

    @classmethod
    def undefined_columns(cls, catalog: SchemaCatalog) -> List[str]:
        if cls.keep_undefined:
            return []
        return cls._undeclared_columns(catalog)

    @classmethod
    def check_keep_undefined(cls, allowed: bool):
        """
        :raises SanitizerDefinitionError: keep_undefined is used while disabled by configuration
        """
        if cls.keep_undefined and not allowed:
            raise SanitizerDefinitionError(
                f"{cls.sanitizer_name()}: keep_undefined is disabled (allow_keep_undefined_columns). "
                f"It bypasses PII review and is meant for development only"
            )

    @classmethod
    def stale_columns(cls, catalog: SchemaCatalog) -> List[str]:
        existing = set(catalog.columns(cls.table_name))
        return [column for column in cls.defined_columns() if column not in existing]

    @classmethod
    def lint(cls, catalog: SchemaCatalog, allow_keep_undefined: bool = True) -> List[str]:
        """
        Human readable definition issues, empty list when the sanitizer is complete
        """
        if cls.keep_undefined and not allow_keep_undefined:
            return [f"{cls.sanitizer_name()} uses keep_undefined, which is disabled by allow_keep_undefined_columns"]

        try:
            undefined = cls.undefined_columns(catalog)
            stale = cls.stale_columns(catalog)
        except MissingTableError as exc:
            return [f"{cls.sanitizer_name()} references a table that doesn't exist: {exc.table}"]

        issues = []
        bulk = cls.bulk_operation

        # bulk operations are terminal, column coverage does not matter for them
        if undefined and bulk is None:
            issues.append(f"{cls.sanitizer_name()} ({cls.table_name}) has undefined columns: {', '.join(undefined)}")

        if stale:
            issues.append(
                f"{cls.sanitizer_name()} ({cls.table_name}) has stale columns (removed from table): {', '.join(stale)}"
            )

        if bulk is not None and cls.defined_columns():
            issues.append(
                f"{cls.sanitizer_name()} uses a terminal bulk operation ({bulk.type.value}) but also declares "
                f"scrub/keep columns ({', '.join(cls.defined_columns())}). These will be ignored."
            )

        if bulk is None and cls.verification is not None and cls.verification.use_default:
            issues.append(
                f"{cls.sanitizer_name()}: verify without a check requires a bulk operation (truncate, delete_all, destroy_all)"
            )

        return issues

    # Evaluation

    @classmethod
    def as_record(cls, record: Union[Record, Mapping[str, Any]]) -> Record:
        if isinstance(record, Record):
            return record
        return Record(cls.table_name or "", record, primary_key=cls.primary_key)

    @classmethod
    def sanitize(cls, record: Union[Record, Mapping[str, Any]], column: Optional[str] = None, raw_value: Any = MISSING):
        """
        Computes scrubbed values without touching the record or the database.
        Seeded by the record id, so the result is the same on every call.

        :return: dict of scrubbed values, or single value when column is given
        """
        record = cls.as_record(record)
        with seeded(record.id):
            instance = cls(record)
            if column is not None:
                return instance.scrub(column, raw_value)
            return instance.scrub_all()

    @classmethod
    async def before_destroy(cls, db: Database, record: Record) -> None:
        """
        Called by destroy_all for every row before it is deleted
        """

    def __init__(self, record: Record):
        self.record = record
        self._scrubbed: Dict[str, Any] = {}
        self._resolving: List[str] = []

    def raw(self, column: str) -> Any:
        return self.record.raw_attribute(column)

    def scrubbed(self, column: str) -> Any:
        if column in self._scrubbed:
            return self._scrubbed[column]

        rule = self._rules.get(column)
        if rule is None:
            return self.raw(column)

        if column in self._resolving:
            chain = self._resolving[self._resolving.index(column):] + [column]
            raise CircularReferenceError(self.sanitizer_name(), chain)

        self._resolving.append(column)
        try:
            value = rule.func(self, self.raw(column))
        finally:
            self._resolving.pop()

        self._scrubbed[column] = value
        return value

    def scrub(self, column: str, raw_value: Any = MISSING) -> Any:
        """
        Scrubbed value of a single column; with raw_value the rule is applied to it instead of stored value
        """
        if raw_value is MISSING or raw_value is None:
            return self.scrubbed(column)

        rule = self._rules.get(column)
        if rule is None:
            return raw_value

        self._resolving.append(column)
        try:
            return rule.func(self, raw_value)
        finally:
            self._resolving.pop()

    def scrub_all(self) -> Dict[str, Any]:
        return {column: self.scrubbed(column) for column in self._rules}

    def __getattr__(self, name: str) -> Any:
        record = self.__dict__.get("record")
        if record is None:
            raise AttributeError(name)

        if name.startswith("raw_") and record.has_attribute(name[4:]):
            return self.raw(name[4:])

        if record.has_attribute(name):
            return self.raw(name)

        raise AttributeError(f"{type(self).__name__} has no attribute {name}")


class EmptySanitizer(Sanitizer):
    """
    Stands in for tables without a sanitizer: scrubs nothing, returns values unchanged
    """
    table_name = None
    friendly_name = "empty"
