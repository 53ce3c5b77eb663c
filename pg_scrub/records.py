from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from pg_scrub.common.constants import DEFAULT_PRIMARY_KEY

RAW_PREFIX = "raw_"


class ReadInterceptor(Protocol):
    def read(self, record: "Record", column: str, raw_value: Any) -> Any:
        ...


class Record:
    """
    Live row of an entity. Column reads go through the optional read interceptor,
    raw_attribute() and raw_<column> always return the stored value.
    """

    def __init__(
        self,
        table: str,
        values: Mapping[str, Any],
        primary_key: str = DEFAULT_PRIMARY_KEY,
        interceptor: Optional[ReadInterceptor] = None,
    ):
        self.__dict__["_table"] = table
        self.__dict__["_values"] = dict(values)
        self.__dict__["_primary_key"] = primary_key
        self.__dict__["_interceptor"] = interceptor
        self.__dict__["_masked_cache"] = {}

    @property
    def table(self) -> str:
        return self._table

    @property
    def primary_key(self) -> str:
        return self._primary_key

    @property
    def id(self) -> Any:
        return self._values.get(self._primary_key)

    @property
    def columns(self) -> List[str]:
        return list(self._values)

    @property
    def masked_cache(self) -> Dict[str, Any]:
        return self._masked_cache

    def set_interceptor(self, interceptor: Optional[ReadInterceptor]):
        self.__dict__["_interceptor"] = interceptor
        self._masked_cache.clear()

    def has_attribute(self, name: str) -> bool:
        return name in self._values

    def raw_attribute(self, name: str) -> Any:
        if name not in self._values:
            raise AttributeError(f"{self._table} has no column {name}")
        return self._values[name]

    def read_attribute(self, name: str) -> Any:
        raw_value = self.raw_attribute(name)
        if self._interceptor is None:
            return raw_value
        return self._interceptor.read(self, name, raw_value)

    def write_attribute(self, name: str, value: Any):
        self._values[name] = value
        self._masked_cache.pop(name, None)

    def reload(self, values: Mapping[str, Any]):
        self._values.clear()
        self._values.update(values)
        self._masked_cache.clear()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get("_values", {})
        if name in values:
            return self.read_attribute(name)
        if name.startswith(RAW_PREFIX) and name[len(RAW_PREFIX):] in values:
            return values[name[len(RAW_PREFIX):]]
        raise AttributeError(f"{self.__dict__.get('_table', 'record')} has no attribute {name}")

    def __setattr__(self, name: str, value: Any):
        if name in self._values:
            self.write_attribute(name, value)
        else:
            super().__setattr__(name, value)

    def __getitem__(self, name: str) -> Any:
        return self.read_attribute(name)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __repr__(self):
        return f"<Record {self._table}#{self.id}>"
