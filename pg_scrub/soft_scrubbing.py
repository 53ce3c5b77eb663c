import inspect
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Callable, Iterator, Mapping, Optional

from pg_scrub.common.constants import DEFAULT_PRIMARY_KEY, PROTECTED_COLUMNS
from pg_scrub.logger import get_logger
from pg_scrub.records import Record
from pg_scrub.registry import SanitizerRegistry

logger = get_logger()


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


# Viewer context never established for this task/thread, unlike an explicit None viewer
UNSET = _Unset()

_viewer: ContextVar[Any] = ContextVar("pg_scrub_viewer", default=UNSET)
_masking_in_progress: ContextVar[bool] = ContextVar("pg_scrub_masking_in_progress", default=False)

Predicate = Callable[[Record, Any], bool]


def set_viewer(viewer: Any) -> Token:
    return _viewer.set(viewer)


def reset_viewer(token: Token):
    _viewer.reset(token)


def current_viewer() -> Any:
    return _viewer.get()


def viewer_context_set() -> bool:
    return _viewer.get() is not UNSET


@contextmanager
def viewer_context(viewer: Any) -> Iterator[None]:
    """
    Masks reads inside the block for the given viewer. None is a valid viewer
    (e.g. anonymous request) and still enables masking
    """
    token = _viewer.set(viewer)
    try:
        yield
    finally:
        _viewer.reset(token)


@contextmanager
def without_viewer_context() -> Iterator[None]:
    """
    Disables masking inside the block, e.g. for authentication code
    """
    token = _viewer.set(UNSET)
    try:
        yield
    finally:
        _viewer.reset(token)


def _call_with_record(func: Callable, record: Record) -> Any:
    try:
        parameters = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return func(record)
    if not parameters:
        return func()
    return func(record)


class SoftScrubbingPolicy:
    """
    Decides whether the current viewer sees masked values of a record.

    Viewer resolution: the value of the active viewer context, or the default
    `context` when that value is None. A callable is called (with the record when it
    accepts an argument), a string is looked up as an attribute of the record and
    then in `lookups`. Anything else is the viewer itself.

    Values of `lookups` are constants, callables or ContextVar objects. A ContextVar
    holds the per task (or thread) value, e.g. the current user set by request
    middleware, and gives None when it is not set.

    Masking applies for every viewer unless `if_` or `unless` predicate is given.
    """

    def __init__(
        self,
        if_: Optional[Predicate] = None,
        unless: Optional[Predicate] = None,
        context: Any = None,
        lookups: Optional[Mapping[str, Any]] = None,
    ):
        if if_ is not None and unless is not None:
            raise ValueError("Soft scrubbing policy accepts either if_ or unless, not both")
        self.if_ = if_
        self.unless = unless
        self.context = context
        self.lookups = dict(lookups or {})

    def _lookup(self, name: str, record: Optional[Record]) -> Any:
        if record is not None and record.has_attribute(name):
            return record.raw_attribute(name)
        if record is not None and hasattr(type(record), name):
            return getattr(record, name)
        if name in self.lookups:
            value = self.lookups[name]
            if isinstance(value, ContextVar):
                return value.get(None)
            return value() if callable(value) else value
        return None

    def resolve_viewer(self, record: Optional[Record] = None) -> Any:
        value = current_viewer()
        if value is UNSET or value is None:
            value = self.context

        if callable(value):
            return _call_with_record(value, record)
        if isinstance(value, str):
            return self._lookup(value, record)
        return value

    def applies(self, record: Record, viewer: Any) -> bool:
        if self.if_ is not None:
            return bool(self.if_(record, viewer))
        if self.unless is not None:
            return not self.unless(record, viewer)
        return True


class MaskingOverlay:
    """
    Read interceptor of Record: returns scrubbed values of the declared scrub
    columns while a viewer context is active, without persisting anything
    """

    def __init__(
        self,
        registry: SanitizerRegistry,
        policy: Optional[SoftScrubbingPolicy] = None,
        enabled: bool = True,
    ):
        self.registry = registry
        self.policy = policy or SoftScrubbingPolicy()
        self.enabled = enabled

    def attach(self, record: Record) -> Record:
        record.set_interceptor(self)
        return record

    def record(self, table: str, values: Mapping[str, Any], primary_key: str = DEFAULT_PRIMARY_KEY) -> Record:
        return Record(table, values, primary_key=primary_key, interceptor=self)

    def read(self, record: Record, column: str, raw_value: Any) -> Any:
        # policy predicates reading masked attributes see the stored values
        if _masking_in_progress.get():
            return raw_value

        if not self.enabled or column in PROTECTED_COLUMNS:
            return raw_value

        # nothing is masked until a viewer context has been established explicitly
        if not viewer_context_set():
            return raw_value

        token = _masking_in_progress.set(True)
        try:
            viewer = self.policy.resolve_viewer(record)
            if not self.policy.applies(record, viewer):
                return raw_value

            sanitizer = self.registry.for_table(record.table)
            if not sanitizer.is_scrubbed_column(column):
                return raw_value

            cache = record.masked_cache
            if column not in cache:
                cache[column] = sanitizer.sanitize(record, column, raw_value=raw_value)
                logger.debug(f"Masked {record.table}.{column} of {record!r}")
            return cache[column]
        finally:
            _masking_in_progress.reset(token)
