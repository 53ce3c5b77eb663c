from typing import Any, Dict, List, Optional, Tuple

import asyncpg
from asyncpg import Connection

from pg_scrub.common.constants import SERVER_SETTINGS
from pg_scrub.common.db_queries import (
    get_batch_query,
    get_column_range_query,
    get_columns_query,
    get_count_query,
    get_create_database_query,
    get_delete_query,
    get_delete_row_query,
    get_drop_database_query,
    get_foreign_keys_query,
    get_largest_tables_query,
    get_primary_keys_query,
    get_probe_write_query,
    get_select_query,
    get_terminate_connections_query,
    get_truncate_query,
    get_update_row_query,
)
from pg_scrub.common.dto import ConnectionParams
from pg_scrub.common.errors import DependentRowsError
from pg_scrub.conditions import Condition, render_condition, where
from pg_scrub.logger import get_logger
from pg_scrub.schema import Database, Row, SchemaCatalog

logger = get_logger()


async def create_connection(connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS) -> Connection:
    return await asyncpg.connect(
        **connection_params.as_dict(),
        server_settings=server_settings,
    )


async def recreate_database(connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS):
    """
    Terminates connections to the database, drops it if exists and creates it again empty.
    Statements are executed from the maintenance "postgres" database
    """
    db_name = connection_params.database
    db_conn = await create_connection(connection_params.with_database("postgres"), server_settings=server_settings)
    try:
        await db_conn.execute(get_terminate_connections_query(db_name))
        await db_conn.execute(get_drop_database_query(db_name))
        await db_conn.execute(get_create_database_query(db_name))
    finally:
        await db_conn.close()


async def drop_database(connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS):
    db_name = connection_params.database
    db_conn = await create_connection(connection_params.with_database("postgres"), server_settings=server_settings)
    try:
        await db_conn.execute(get_terminate_connections_query(db_name))
        await db_conn.execute(get_drop_database_query(db_name))
    finally:
        await db_conn.close()


def _affected_rows(status: str) -> int:
    # asyncpg returns command tag, e.g. "DELETE 12"
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PgDatabase(Database):
    """
    PostgreSQL storage over a single asyncpg connection
    """

    def __init__(self, connection: Connection, connection_params: Optional[ConnectionParams] = None):
        self.connection = connection
        self.connection_params = connection_params
        self._catalog = None

    @classmethod
    async def connect(cls, connection_params: ConnectionParams, server_settings: Dict = SERVER_SETTINGS) -> "PgDatabase":
        connection = await create_connection(connection_params, server_settings=server_settings)
        return cls(connection, connection_params)

    async def load_catalog(self) -> SchemaCatalog:
        columns: Dict[str, List[str]] = {}
        for record in await self.connection.fetch(get_columns_query()):
            table = SchemaCatalog.table_key(record["table_schema"], record["table_name"])
            columns.setdefault(table, []).append(record["column_name"])

        primary_keys = {
            SchemaCatalog.table_key(record["table_schema"], record["table_name"]): record["column_name"]
            for record in await self.connection.fetch(get_primary_keys_query())
        }

        foreign_keys = [
            (
                SchemaCatalog.table_key(record["table_schema"], record["table_name"]),
                SchemaCatalog.table_key(record["referenced_schema"], record["referenced_table"]),
            )
            for record in await self.connection.fetch(get_foreign_keys_query())
        ]

        return SchemaCatalog(columns, primary_keys, foreign_keys)

    def transaction(self):
        # asyncpg turns nested transactions into savepoints
        return self.connection.transaction()

    async def count(self, table: str, condition: Optional[Condition] = None) -> int:
        params: List[Any] = []
        query = get_count_query(table, render_condition(condition, params))
        return await self.connection.fetchval(query, *params)

    async def delete(self, table: str, condition: Optional[Condition] = None) -> int:
        params: List[Any] = []
        query = get_delete_query(table, render_condition(condition, params))
        try:
            status = await self.connection.execute(query, *params)
        except asyncpg.ForeignKeyViolationError as exc:
            raise DependentRowsError(table, str(exc)) from exc
        return _affected_rows(status)

    async def truncate(self, table: str) -> None:
        try:
            await self.connection.execute(get_truncate_query(table))
        except asyncpg.FeatureNotSupportedError as exc:
            # truncate of a table referenced by foreign keys
            raise DependentRowsError(table, str(exc)) from exc

    async def fetch_batch(self, table: str, primary_key: str, after: Any, limit: int) -> List[Row]:
        query = get_batch_query(table, primary_key, has_cursor=after is not None, limit=limit)
        params = [after] if after is not None else []
        return [dict(record) for record in await self.connection.fetch(query, *params)]

    async def fetch_row(self, table: str, primary_key: str, key: Any) -> Optional[Row]:
        params: List[Any] = []
        query = get_select_query(table, render_condition(where(**{primary_key: key}), params), limit=1)
        record = await self.connection.fetchrow(query, *params)
        return dict(record) if record is not None else None

    async def fetch_rows(
        self,
        table: str,
        condition: Optional[Condition] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        params: List[Any] = []
        query = get_select_query(table, render_condition(condition, params), order_by=order_by, limit=limit)
        return [dict(record) for record in await self.connection.fetch(query, *params)]

    async def update_row(self, table: str, primary_key: str, key: Any, values: Dict[str, Any]) -> None:
        if not values:
            return
        columns = list(values)
        query = get_update_row_query(table, columns, primary_key)
        await self.connection.execute(query, *[values[column] for column in columns], key)

    async def delete_row(self, table: str, primary_key: str, key: Any) -> int:
        try:
            status = await self.connection.execute(get_delete_row_query(table, primary_key), key)
        except asyncpg.ForeignKeyViolationError as exc:
            raise DependentRowsError(table, str(exc)) from exc
        return _affected_rows(status)

    async def probe_write_access(self) -> bool:
        transaction = self.connection.transaction()
        await transaction.start()
        try:
            await self.connection.execute(get_probe_write_query())
            return True
        except (asyncpg.InsufficientPrivilegeError, asyncpg.ReadOnlySQLTransactionError):
            return False
        except asyncpg.PostgresError as exc:
            # unknown failure, assume write access
            logger.warning(f"Could not verify read-only status: {exc}")
            return True
        finally:
            await transaction.rollback()

    async def column_range(self, table: str, column: str) -> Tuple[Any, Any]:
        record = await self.connection.fetchrow(get_column_range_query(table, column))
        return record["oldest"], record["newest"]

    async def table_sizes(self, limit: int = 20) -> List[Row]:
        return [
            {
                "table": SchemaCatalog.table_key(record["table_schema"], record["table_name"]),
                "total_size": record["total_size"],
                "estimated_rows": record["estimated_rows"],
            }
            for record in await self.connection.fetch(get_largest_tables_query(limit))
        ]

    async def close(self) -> None:
        if not self.connection.is_closed():
            await self.connection.close()
