from typing import List, Sequence

from pg_scrub.common.constants import DEFAULT_EXCLUDED_SCHEMAS


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_table(table: str) -> str:
    """
    Quotes "table" or "schema.table" name
    """
    return ".".join(quote_ident(part) for part in table.split(".", 1))


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def get_limit_query(limit: int) -> str:
    return f"LIMIT {limit}" if limit is not None and limit > 0 else ""


def get_excluded_schemas_sql(excluded_schemas: Sequence[str] = DEFAULT_EXCLUDED_SCHEMAS) -> str:
    return ", ".join(quote_literal(schema) for schema in excluded_schemas)


def get_columns_query(excluded_schemas: Sequence[str] = DEFAULT_EXCLUDED_SCHEMAS) -> str:
    return f"""
        SELECT c.table_schema, c.table_name, c.column_name, c.data_type
        FROM information_schema.columns c
        JOIN information_schema.tables t
            ON t.table_schema = c.table_schema AND t.table_name = c.table_name
        WHERE
            t.table_type = 'BASE TABLE'
            AND c.table_schema NOT IN ({get_excluded_schemas_sql(excluded_schemas)})
            AND c.table_schema NOT LIKE 'pg_temp%'
        ORDER BY c.table_schema, c.table_name, c.ordinal_position
    """


def get_primary_keys_query(excluded_schemas: Sequence[str] = DEFAULT_EXCLUDED_SCHEMAS) -> str:
    return f"""
        SELECT n.nspname AS table_schema, cl.relname AS table_name, a.attname AS column_name
        FROM pg_index i
        JOIN pg_class cl ON cl.oid = i.indrelid
        JOIN pg_namespace n ON n.oid = cl.relnamespace
        JOIN pg_attribute a ON a.attrelid = cl.oid AND a.attnum = ANY(i.indkey)
        WHERE
            i.indisprimary
            AND array_length(i.indkey, 1) = 1
            AND n.nspname NOT IN ({get_excluded_schemas_sql(excluded_schemas)})
    """


def get_foreign_keys_query(excluded_schemas: Sequence[str] = DEFAULT_EXCLUDED_SCHEMAS) -> str:
    """
    Pairs of (referencing table, referenced table)
    """
    return f"""
        SELECT DISTINCT
            src_ns.nspname AS table_schema,
            src.relname AS table_name,
            ref_ns.nspname AS referenced_schema,
            ref.relname AS referenced_table
        FROM pg_constraint con
        JOIN pg_class src ON src.oid = con.conrelid
        JOIN pg_namespace src_ns ON src_ns.oid = src.relnamespace
        JOIN pg_class ref ON ref.oid = con.confrelid
        JOIN pg_namespace ref_ns ON ref_ns.oid = ref.relnamespace
        WHERE
            con.contype = 'f'
            AND src_ns.nspname NOT IN ({get_excluded_schemas_sql(excluded_schemas)})
    """


def get_count_query(table: str, condition_sql: str = "TRUE") -> str:
    return f"SELECT count(*) FROM {quote_table(table)} WHERE {condition_sql}"


def get_delete_query(table: str, condition_sql: str = "TRUE") -> str:
    return f"DELETE FROM {quote_table(table)} WHERE {condition_sql}"


def get_truncate_query(table: str) -> str:
    return f"TRUNCATE TABLE {quote_table(table)} RESTART IDENTITY"


def get_batch_query(table: str, primary_key: str, has_cursor: bool, limit: int) -> str:
    """
    Keyset pagination: rows ordered by primary key, starting after the last seen key ($1)
    """
    condition = f"WHERE {quote_ident(primary_key)} > $1" if has_cursor else ""
    return f"""
        SELECT * FROM {quote_table(table)}
        {condition}
        ORDER BY {quote_ident(primary_key)}
        {get_limit_query(limit)}
    """


def get_select_query(table: str, condition_sql: str = "TRUE", order_by: str = None, limit: int = None) -> str:
    order = f"ORDER BY {quote_ident(order_by)}" if order_by else ""
    return f"SELECT * FROM {quote_table(table)} WHERE {condition_sql} {order} {get_limit_query(limit)}"


def get_update_row_query(table: str, columns: List[str], primary_key: str) -> str:
    assignments = ", ".join(
        f"{quote_ident(column)} = ${position}" for position, column in enumerate(columns, start=1)
    )
    return (
        f"UPDATE {quote_table(table)} SET {assignments} "
        f"WHERE {quote_ident(primary_key)} = ${len(columns) + 1}"
    )


def get_delete_row_query(table: str, primary_key: str) -> str:
    return f"DELETE FROM {quote_table(table)} WHERE {quote_ident(primary_key)} = $1"


def get_probe_write_query() -> str:
    return "CREATE TEMP TABLE pg_scrub_write_probe (id integer) ON COMMIT DROP"


def get_column_range_query(table: str, column: str) -> str:
    return f"SELECT min({quote_ident(column)}) AS oldest, max({quote_ident(column)}) AS newest FROM {quote_table(table)}"


def get_largest_tables_query(limit: int = 20, excluded_schemas: Sequence[str] = DEFAULT_EXCLUDED_SCHEMAS) -> str:
    return f"""
        SELECT
            n.nspname AS table_schema,
            c.relname AS table_name,
            pg_total_relation_size(c.oid) AS total_size,
            c.reltuples::bigint AS estimated_rows
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE
            c.relkind IN ('r', 'p')
            AND n.nspname NOT IN ({get_excluded_schemas_sql(excluded_schemas)})
        ORDER BY total_size DESC
        {get_limit_query(limit)}
    """


def get_terminate_connections_query(db_name: str) -> str:
    return f"""
        SELECT pg_terminate_backend(pid)
        FROM pg_stat_activity
        WHERE datname = {quote_literal(db_name)} AND pid <> pg_backend_pid()
    """


def get_drop_database_query(db_name: str) -> str:
    return f"DROP DATABASE IF EXISTS {quote_ident(db_name)}"


def get_create_database_query(db_name: str) -> str:
    return f"CREATE DATABASE {quote_ident(db_name)}"
