from __future__ import annotations

import logging
from typing import Callable, Iterator, Sequence

import pandas as pd

from drain_audit.config import AppConfig
from drain_audit.io.schema import normalize_registration_columns, normalize_snapshot_columns

LOGGER = logging.getLogger(__name__)

Normalizer = Callable[[pd.DataFrame], pd.DataFrame]


def _load_psycopg():
    try:
        import psycopg
        from psycopg import sql
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "psycopg is required for PostgreSQL operations. "
            "Install with: pip install 'psycopg[binary]'"
        ) from exc
    return psycopg, sql


class PostgresRecordSource:
    """Snapshot or registration records paged out of a PostgreSQL table.

    Pages are fetched with keyset pagination on ``(device, time)`` so each
    batch arrives ordered by device then time.
    """

    def __init__(
        self,
        db_url: str,
        table_name: str,
        source_columns: Sequence[str],
        device_column: str,
        time_column: str,
        normalizer: Normalizer,
        batch_size: int = 10_000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.db_url = db_url
        self.table_name = table_name
        self.source_columns = list(dict.fromkeys(source_columns))
        self.device_column = device_column
        self.time_column = time_column
        self.normalizer = normalizer
        self.batch_size = batch_size

    def _page_query(self, sql, after: float | None, cursor_key: tuple[str, float] | None):
        conditions = []
        params: list[object] = []
        device = sql.Identifier(self.device_column)
        time = sql.Identifier(self.time_column)
        if after is not None and after > 0:
            conditions.append(sql.SQL("{time} > %s").format(time=time))
            params.append(float(after))
        if cursor_key is not None:
            conditions.append(
                sql.SQL("({device}, {time}) > (%s, %s)").format(device=device, time=time)
            )
            params.extend(cursor_key)

        where_sql = sql.SQL("")
        if conditions:
            where_sql = sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions)

        query = sql.SQL(
            """
            SELECT {columns}
            FROM {table_name}
            {where_sql}
            ORDER BY {device}, {time}
            LIMIT %s
            """
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(column) for column in self.source_columns),
            table_name=sql.Identifier(self.table_name),
            where_sql=where_sql,
            device=device,
            time=time,
        )
        params.append(int(self.batch_size))
        return query, params

    def iter_batches(self, after: float | None = None) -> Iterator[pd.DataFrame]:
        psycopg, sql = _load_psycopg()
        device_index = self.source_columns.index(self.device_column)
        time_index = self.source_columns.index(self.time_column)
        cursor_key: tuple[str, float] | None = None

        with psycopg.connect(self.db_url) as conn:
            with conn.cursor() as cursor:
                while True:
                    query, params = self._page_query(sql, after=after, cursor_key=cursor_key)
                    cursor.execute(query, params)
                    rows = cursor.fetchall()
                    if not rows:
                        return
                    last = rows[-1]
                    cursor_key = (last[device_index], last[time_index])
                    LOGGER.debug("Fetched %s rows from %s", len(rows), self.table_name)
                    yield self.normalizer(pd.DataFrame(rows, columns=self.source_columns))
                    if len(rows) < self.batch_size:
                        return


def snapshot_postgres_source(config: AppConfig) -> PostgresRecordSource:
    if not config.input.db_url:
        raise ValueError("input.db_url must be set when input.mode is 'postgres'")
    columns = config.columns.snapshots
    return PostgresRecordSource(
        db_url=config.input.db_url,
        table_name=config.input.samples_table,
        source_columns=[
            columns.device_id,
            columns.timestamp,
            columns.battery_level,
            columns.battery_state,
            columns.event,
            columns.processes,
        ],
        device_column=columns.device_id,
        time_column=columns.timestamp,
        normalizer=lambda df: normalize_snapshot_columns(
            df,
            columns=columns,
            process_delimiter=config.rates.process_delimiter,
        ),
        batch_size=config.input.batch_size,
    )


def registration_postgres_source(config: AppConfig) -> PostgresRecordSource:
    if not config.input.db_url:
        raise ValueError("input.db_url must be set when input.mode is 'postgres'")
    columns = config.columns.registrations
    return PostgresRecordSource(
        db_url=config.input.db_url,
        table_name=config.input.registrations_table,
        source_columns=[columns.device_id, columns.timestamp, columns.os, columns.model],
        device_column=columns.device_id,
        time_column=columns.timestamp,
        normalizer=lambda df: normalize_registration_columns(df, columns=columns),
        batch_size=config.input.batch_size,
    )
