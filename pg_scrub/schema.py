from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Dict, Iterable, List, Optional, Tuple

from pg_scrub.common.errors import MissingTableError
from pg_scrub.conditions import Condition

Row = Dict[str, Any]


class SchemaCatalog:
    """
    Snapshot of database structure: tables with their columns in ordinal order,
    single column primary keys and foreign key references.

    Tables of the public schema are addressed by bare name, other schemas as "schema.table".
    """

    def __init__(
        self,
        columns: Dict[str, List[str]],
        primary_keys: Optional[Dict[str, str]] = None,
        foreign_keys: Optional[Iterable[Tuple[str, str]]] = None,
    ):
        self._columns = {table: list(table_columns) for table, table_columns in columns.items()}
        self._primary_keys = dict(primary_keys or {})
        # (referencing table, referenced table)
        self._foreign_keys = list(foreign_keys or [])

    @staticmethod
    def table_key(schema: str, table: str) -> str:
        if schema == "public":
            return table
        return f"{schema}.{table}"

    def tables(self) -> List[str]:
        return sorted(self._columns)

    def has_table(self, table: str) -> bool:
        return table in self._columns

    def columns(self, table: str) -> List[str]:
        if table not in self._columns:
            raise MissingTableError(table)
        return list(self._columns[table])

    def has_column(self, table: str, column: str) -> bool:
        return column in self._columns.get(table, ())

    def primary_key(self, table: str) -> Optional[str]:
        return self._primary_keys.get(table)

    def dependents(self, table: str) -> List[str]:
        """
        Tables holding foreign keys that reference the given table
        """
        return sorted({
            referencing
            for referencing, referenced in self._foreign_keys
            if referenced == table and referencing != table
        })


class Database(ABC):
    """
    Storage collaborator. Every read and mutation performed by pg_scrub goes through it.
    """

    _catalog: Optional[SchemaCatalog] = None

    @abstractmethod
    async def load_catalog(self) -> SchemaCatalog:
        ...

    async def catalog(self, refresh: bool = False) -> SchemaCatalog:
        if self._catalog is None or refresh:
            self._catalog = await self.load_catalog()
        return self._catalog

    @abstractmethod
    def transaction(self) -> AsyncContextManager:
        """
        Transaction block. Nested blocks behave as savepoints: failure inside
        rolls back the nested block only
        """

    @abstractmethod
    async def count(self, table: str, condition: Optional[Condition] = None) -> int:
        ...

    @abstractmethod
    async def delete(self, table: str, condition: Optional[Condition] = None) -> int:
        """
        Bulk delete, returns number of deleted rows.
        Raises DependentRowsError when foreign keys still reference the rows
        """

    @abstractmethod
    async def truncate(self, table: str) -> None:
        """
        Removes all rows and restarts identity counters
        """

    @abstractmethod
    async def fetch_batch(self, table: str, primary_key: str, after: Any, limit: int) -> List[Row]:
        """
        Rows ordered by primary key with key greater than after (all rows from the start if after is None)
        """

    @abstractmethod
    async def fetch_row(self, table: str, primary_key: str, key: Any) -> Optional[Row]:
        ...

    @abstractmethod
    async def fetch_rows(
        self,
        table: str,
        condition: Optional[Condition] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abstractmethod
    async def update_row(self, table: str, primary_key: str, key: Any, values: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_row(self, table: str, primary_key: str, key: Any) -> int:
        ...

    @abstractmethod
    async def probe_write_access(self) -> bool:
        """
        Tries a reversible write. True means the connection is able to modify the database
        """

    async def column_range(self, table: str, column: str) -> Tuple[Any, Any]:
        """
        Smallest and largest value of the column, (None, None) for an empty table
        """
        return None, None

    async def table_sizes(self, limit: int = 20) -> List[Row]:
        """
        Largest tables: table, total_size (bytes), estimated_rows
        """
        return []

    async def close(self) -> None:
        pass


class Table:
    """
    Handle passed to verification checks
    """

    def __init__(self, db: Database, name: str):
        self.db = db
        self.name = name

    async def count(self, condition: Optional[Condition] = None) -> int:
        return await self.db.count(self.name, condition)

    async def exists(self, condition: Optional[Condition] = None) -> bool:
        return await self.count(condition) > 0

    async def rows(self, condition: Optional[Condition] = None, limit: Optional[int] = None) -> List[Row]:
        return await self.db.fetch_rows(self.name, condition, limit=limit)

    def __repr__(self):
        return f"Table({self.name})"
