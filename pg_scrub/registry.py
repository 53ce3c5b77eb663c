from typing import Dict, Iterable, Iterator, List, Optional, Type

from pg_scrub.common.errors import SanitizerDefinitionError, UnknownSanitizerError
from pg_scrub.sanitizer import EmptySanitizer, Sanitizer
from pg_scrub.schema import SchemaCatalog


class SanitizerRegistry:
    """
    Set of sanitizers used by a run, addressed by friendly name or by table
    """

    def __init__(self, sanitizers: Iterable[Type[Sanitizer]] = ()):
        self._by_name: Dict[str, Type[Sanitizer]] = {}
        self._by_table: Dict[str, Type[Sanitizer]] = {}
        for sanitizer in sanitizers:
            self.register(sanitizer)

    def register(self, sanitizer: Type[Sanitizer]) -> Type[Sanitizer]:
        """
        Adds sanitizer class, usable as class decorator
        """
        if not (isinstance(sanitizer, type) and issubclass(sanitizer, Sanitizer)) or sanitizer is EmptySanitizer:
            raise SanitizerDefinitionError(f"Not a sanitizer class: {sanitizer!r}")

        name = sanitizer.friendly_name
        if name in self._by_name and self._by_name[name] is not sanitizer:
            raise SanitizerDefinitionError(
                f"Friendly name '{name}' is used by both {self._by_name[name].__name__} and {sanitizer.__name__}"
            )

        table = sanitizer.table_name
        if table in self._by_table and self._by_table[table] is not sanitizer:
            raise SanitizerDefinitionError(
                f"Table '{table}' is sanitized by both {self._by_table[table].__name__} and {sanitizer.__name__}"
            )

        self._by_name[name] = sanitizer
        self._by_table[table] = sanitizer
        return sanitizer

    def available(self) -> List[str]:
        return sorted(self._by_name)

    def all(self) -> List[Type[Sanitizer]]:
        return [self._by_name[name] for name in self.available()]

    def find(self, name: str) -> Optional[Type[Sanitizer]]:
        sanitizer = self._by_name.get(name)
        if sanitizer is not None:
            return sanitizer

        for candidate in self._by_name.values():
            if candidate.__name__ == name:
                return candidate
        return None

    def get(self, name: str) -> Type[Sanitizer]:
        sanitizer = self.find(name)
        if sanitizer is None:
            raise UnknownSanitizerError(name)
        return sanitizer

    def resolve(self, names: Optional[Iterable[str]] = None) -> List[Type[Sanitizer]]:
        """
        Sanitizers for the requested names (every registered one without names).
        Any unknown name fails the whole resolution
        """
        if not names:
            return self.all()

        resolved = []
        for name in names:
            sanitizer = self.get(name)
            if sanitizer not in resolved:
                resolved.append(sanitizer)
        return resolved

    def for_table(self, table: str) -> Type[Sanitizer]:
        return self._by_table.get(table, EmptySanitizer)

    def has_table(self, table: str) -> bool:
        return table in self._by_table

    def lint(self, catalog: SchemaCatalog, allow_keep_undefined: bool = True) -> Dict[str, List[str]]:
        """
        Issues of every sanitizer that has any
        """
        issues = {}
        for sanitizer in self.all():
            sanitizer_issues = sanitizer.lint(catalog, allow_keep_undefined)
            if sanitizer_issues:
                issues[sanitizer.friendly_name] = sanitizer_issues
        return issues

    def __len__(self) -> int:
        return len(self._by_name)

    def __iter__(self) -> Iterator[Type[Sanitizer]]:
        return iter(self.all())

    def __contains__(self, name: str) -> bool:
        return self.find(name) is not None
