"""DuckDB implementation of the storage contract.

All tables live in one DuckDB database file. Timestamps are stored as naive
UTC `TIMESTAMP` values and returned as timezone-aware datetimes. Every DuckDB
failure is wrapped into `StorageError`.
"""

import json
import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb

from paysync.config import PaySyncSettings, get_settings
from paysync.errors import NotFoundError, StorageError
from paysync.models import (
    Connector,
    ConnectorID,
    EntityKind,
    EventID,
    EventSent,
    FetchState,
    ItemKind,
    OutboxEvent,
    OutboxEventStatus,
    PSPItem,
    WebhookConfig,
)
from paysync.models.tasks import tree_from_json, tree_to_json

logger = logging.getLogger(__name__)

_ITEM_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        id VARCHAR PRIMARY KEY,
        connector_id VARCHAR NOT NULL,
        reference VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        data VARCHAR NOT NULL
    )
"""

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS connectors (
        id VARCHAR PRIMARY KEY,
        provider VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        config VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        scheduled_for_deletion BOOLEAN NOT NULL DEFAULT FALSE,
        task_tree VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS states (
        id VARCHAR PRIMARY KEY,
        connector_id VARCHAR NOT NULL,
        reference VARCHAR NOT NULL,
        state VARCHAR,
        has_more BOOLEAN NOT NULL,
        pages_fetched INTEGER NOT NULL DEFAULT 0,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS webhook_configs (
        id VARCHAR PRIMARY KEY,
        connector_id VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        url_path VARCHAR NOT NULL,
        metadata VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS outbox_events (
        id VARCHAR PRIMARY KEY,
        idempotency_key VARCHAR NOT NULL,
        connector_id VARCHAR,
        event_type VARCHAR NOT NULL,
        entity_id VARCHAR NOT NULL,
        payload VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        status VARCHAR NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_retry_at TIMESTAMP,
        error VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events_sent (
        id VARCHAR PRIMARY KEY,
        idempotency_key VARCHAR NOT NULL,
        connector_id VARCHAR,
        sent_at TIMESTAMP NOT NULL
    )
    """,
    *(_ITEM_TABLE_DDL.format(table=kind.value) for kind in ItemKind),
]

_OUTBOX_COLUMNS = (
    "id, idempotency_key, connector_id, event_type, entity_id, payload, "
    "created_at, status, retry_count, last_retry_at, error"
)


def _to_db(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(UTC).replace(tzinfo=None)
    return ts


def _from_db(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts.replace(tzinfo=UTC)


def _connector_or_none(value: str | None) -> ConnectorID | None:
    return ConnectorID.parse(value) if value else None


def _outbox_from_row(row: tuple[Any, ...]) -> OutboxEvent:
    (
        _,
        idempotency_key,
        connector,
        event_type,
        entity_id,
        payload,
        created_at,
        status,
        retry_count,
        last_retry_at,
        error,
    ) = row
    connector_id = _connector_or_none(connector)
    return OutboxEvent(
        id=EventID(idempotency_key=idempotency_key, connector_id=connector_id),
        event_type=event_type,
        entity_id=entity_id,
        payload=payload,
        created_at=_from_db(created_at),
        status=OutboxEventStatus(status),
        connector_id=connector_id,
        retry_count=retry_count,
        last_retry_at=_from_db(last_retry_at),
        error=error,
    )


class DuckDBStorage:
    """Storage backed by a single DuckDB connection.

    DuckDB allows one writer per database file, so the connection is shared
    and serialised with a lock.
    """

    def __init__(self, database_path: Path | str = ":memory:"):
        """Open (and create when needed) the database.

        Args:
            database_path: DuckDB file path, or ":memory:"

        Raises:
            StorageError: If the database cannot be opened
        """
        self.database_path = database_path
        self._lock = threading.RLock()

        if str(database_path) != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = duckdb.connect(str(database_path))
        except duckdb.Error as e:
            raise StorageError(f"failed to open database {database_path}: {e}") from e

        self._create_schema()
        logger.debug(f"Opened storage at {database_path}")

    def __enter__(self) -> "DuckDBStorage":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _create_schema(self) -> None:
        with self._transaction() as conn:
            for ddl in _SCHEMA:
                conn.execute(ddl)

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            try:
                self._conn.begin()
                yield self._conn
                self._conn.commit()
            except duckdb.Error as e:
                self._rollback()
                raise StorageError(f"storage transaction failed: {e}") from e
            except BaseException:
                self._rollback()
                raise

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except duckdb.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def _fetchall(self, sql: str, params: list[Any] | None = None) -> list[tuple[Any, ...]]:
        with self._lock:
            try:
                return self._conn.execute(sql, params or []).fetchall()
            except duckdb.Error as e:
                raise StorageError(f"storage query failed: {e}") from e

    @staticmethod
    def _rowcount(conn: duckdb.DuckDBPyConnection, sql: str, params: list[Any]) -> int:
        result = conn.execute(sql, params).fetchone()
        return int(result[0]) if result else 0

    # Connectors

    def install_connector(self, connector: Connector) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO connectors
                    (id, provider, name, config, created_at, scheduled_for_deletion, task_tree)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    str(connector.id),
                    connector.provider,
                    connector.name,
                    json.dumps(connector.config, default=str),
                    _to_db(connector.created_at),
                    connector.scheduled_for_deletion,
                    tree_to_json(connector.task_tree),
                ],
            )

    def _connector_from_row(self, row: tuple[Any, ...]) -> Connector:
        connector_id, _, name, config, created_at, scheduled, task_tree = row
        return Connector(
            id=ConnectorID.parse(connector_id),
            name=name,
            config=json.loads(config),
            created_at=_from_db(created_at),
            scheduled_for_deletion=scheduled,
            task_tree=tree_from_json(task_tree),
        )

    def get_connector(self, connector_id: ConnectorID) -> Connector:
        """Load one connector.

        Raises:
            NotFoundError: If the connector is not installed
        """
        rows = self._fetchall(
            "SELECT id, provider, name, config, created_at, scheduled_for_deletion, task_tree "
            "FROM connectors WHERE id = ?",
            [str(connector_id)],
        )
        if not rows:
            raise NotFoundError(f"connector {connector_id} not found")
        return self._connector_from_row(rows[0])

    def list_connectors(self) -> list[Connector]:
        rows = self._fetchall(
            "SELECT id, provider, name, config, created_at, scheduled_for_deletion, task_tree "
            "FROM connectors ORDER BY created_at, id"
        )
        return [self._connector_from_row(row) for row in rows]

    def schedule_connector_deletion(self, connector_id: ConnectorID) -> None:
        with self._transaction() as conn:
            updated = self._rowcount(
                conn,
                "UPDATE connectors SET scheduled_for_deletion = TRUE WHERE id = ?",
                [str(connector_id)],
            )
        if updated == 0:
            raise NotFoundError(f"connector {connector_id} not found")

    def delete_connector(self, connector_id: ConnectorID) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM connectors WHERE id = ?", [str(connector_id)])

    # Fetched items

    def upsert_items(
        self,
        connector_id: ConnectorID,
        items: Sequence[PSPItem],
        outbox_events: Sequence[OutboxEvent] = (),
    ) -> int:
        """Upsert items by reference, with their outbox rows, in one transaction.

        Returns:
            int: Number of items written
        """
        if not items and not outbox_events:
            return 0

        rows_by_table: dict[str, list[list[Any]]] = {}
        for item in items:
            rows_by_table.setdefault(item.kind.value, []).append(
                [
                    item.stored_id(connector_id),
                    str(connector_id),
                    item.reference,
                    _to_db(item.created_at),
                    item.model_dump_json(),
                ]
            )

        with self._transaction() as conn:
            for table, rows in rows_by_table.items():
                conn.executemany(
                    f"""
                    INSERT INTO {table} (id, connector_id, reference, created_at, data)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (id) DO UPDATE SET
                        created_at = excluded.created_at,
                        data = excluded.data
                    """,  # noqa: S608  # table comes from the ItemKind enum
                    rows,
                )
            self._insert_outbox(conn, outbox_events)

        return len(items)

    def list_items(self, kind: ItemKind, connector_id: ConnectorID) -> list[dict[str, Any]]:
        rows = self._fetchall(
            f"SELECT id, reference, created_at, data FROM {kind.value} "  # noqa: S608
            "WHERE connector_id = ? ORDER BY created_at, reference",
            [str(connector_id)],
        )
        return [
            {
                "id": row_id,
                "reference": reference,
                "created_at": _from_db(created_at),
                "data": json.loads(data),
            }
            for row_id, reference, created_at, data in rows
        ]

    def count_items(self, kind: ItemKind, connector_id: ConnectorID) -> int:
        rows = self._fetchall(
            f"SELECT COUNT(*) FROM {kind.value} WHERE connector_id = ?",  # noqa: S608
            [str(connector_id)],
        )
        return int(rows[0][0]) if rows else 0

    def delete_items(
        self,
        connector_id: ConnectorID,
        kind: ItemKind,
        item_ids: Sequence[str],
        outbox_events: Sequence[OutboxEvent] = (),
    ) -> int:
        """Delete items by stored id, with their outbox rows, in one transaction.

        Returns:
            int: Number of rows deleted; ids already gone count for nothing
        """
        if not item_ids and not outbox_events:
            return 0

        deleted = 0
        with self._transaction() as conn:
            for item_id in item_ids:
                deleted += self._rowcount(
                    conn,
                    f"DELETE FROM {kind.value} WHERE id = ? AND connector_id = ?",  # noqa: S608
                    [item_id, str(connector_id)],
                )
            self._insert_outbox(conn, outbox_events)
        return deleted

    # Fetch states

    @staticmethod
    def _state_id(connector_id: ConnectorID, reference: str) -> str:
        return f"{connector_id}/{reference}"

    def get_state(self, connector_id: ConnectorID, reference: str) -> FetchState | None:
        rows = self._fetchall(
            "SELECT reference, state, has_more, pages_fetched FROM states WHERE id = ?",
            [self._state_id(connector_id, reference)],
        )
        if not rows:
            return None
        ref, state, has_more, pages_fetched = rows[0]
        return FetchState(
            reference=ref,
            state=json.loads(state) if state is not None else None,
            has_more=has_more,
            pages_fetched=pages_fetched,
        )

    def upsert_state(self, connector_id: ConnectorID, state: FetchState) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO states
                    (id, connector_id, reference, state, has_more, pages_fetched, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    state = excluded.state,
                    has_more = excluded.has_more,
                    pages_fetched = excluded.pages_fetched,
                    updated_at = excluded.updated_at
                """,
                [
                    self._state_id(connector_id, state.reference),
                    str(connector_id),
                    state.reference,
                    json.dumps(state.state),
                    state.has_more,
                    state.pages_fetched,
                    _to_db(datetime.now(UTC)),
                ],
            )

    def list_states(self, connector_id: ConnectorID) -> list[FetchState]:
        rows = self._fetchall(
            "SELECT reference, state, has_more, pages_fetched FROM states "
            "WHERE connector_id = ? ORDER BY reference",
            [str(connector_id)],
        )
        return [
            FetchState(
                reference=ref,
                state=json.loads(state) if state is not None else None,
                has_more=has_more,
                pages_fetched=pages_fetched,
            )
            for ref, state, has_more, pages_fetched in rows
        ]

    # Webhooks

    def upsert_webhook_configs(
        self, connector_id: ConnectorID, configs: Sequence[WebhookConfig]
    ) -> None:
        if not configs:
            return
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO webhook_configs (id, connector_id, name, url_path, metadata)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    url_path = excluded.url_path,
                    metadata = excluded.metadata
                """,
                [
                    [
                        f"{connector_id}/{config.name}",
                        str(connector_id),
                        config.name,
                        config.url_path,
                        json.dumps(config.metadata),
                    ]
                    for config in configs
                ],
            )

    def list_webhook_configs(self, connector_id: ConnectorID) -> list[WebhookConfig]:
        rows = self._fetchall(
            "SELECT name, url_path, metadata FROM webhook_configs "
            "WHERE connector_id = ? ORDER BY name",
            [str(connector_id)],
        )
        return [
            WebhookConfig(name=name, url_path=url_path, metadata=json.loads(metadata))
            for name, url_path, metadata in rows
        ]

    # Outbox

    def _insert_outbox(
        self, conn: duckdb.DuckDBPyConnection, events: Sequence[OutboxEvent]
    ) -> int:
        inserted = 0
        for event in events:
            key = event.id.key
            if conn.execute("SELECT 1 FROM events_sent WHERE id = ?", [key]).fetchone():
                logger.debug(f"Skipping outbox event {key}: already sent")
                continue
            inserted += self._rowcount(
                conn,
                f"""
                INSERT INTO outbox_events ({_OUTBOX_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO NOTHING
                """,  # noqa: S608
                [
                    key,
                    event.id.idempotency_key,
                    str(event.connector_id) if event.connector_id else None,
                    event.event_type,
                    event.entity_id,
                    event.payload,
                    _to_db(event.created_at),
                    event.status.value,
                    event.retry_count,
                    _to_db(event.last_retry_at),
                    event.error,
                ],
            )
        return inserted

    def outbox_insert(self, events: Sequence[OutboxEvent]) -> int:
        """Insert outbox rows, skipping ids already sent or already queued.

        Returns:
            int: Number of rows actually inserted
        """
        if not events:
            return 0
        with self._transaction() as conn:
            return self._insert_outbox(conn, events)

    def outbox_poll_pending(self, limit: int) -> list[OutboxEvent]:
        rows = self._fetchall(
            f"SELECT {_OUTBOX_COLUMNS} FROM outbox_events "  # noqa: S608
            "WHERE status = ? ORDER BY created_at, id LIMIT ?",
            [OutboxEventStatus.PENDING.value, limit],
        )
        return [_outbox_from_row(row) for row in rows]

    def outbox_list(
        self, status: OutboxEventStatus, limit: int | None = None
    ) -> list[OutboxEvent]:
        sql = f"SELECT {_OUTBOX_COLUMNS} FROM outbox_events WHERE status = ? ORDER BY created_at, id"  # noqa: S608
        params: list[Any] = [status.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_outbox_from_row(row) for row in self._fetchall(sql, params)]

    def outbox_mark_processed_and_record_sent(
        self, event_ids: Sequence[EventID], sent: Sequence[EventSent]
    ) -> None:
        """Mark events processed and append them to the ledger atomically."""
        if not event_ids and not sent:
            return
        with self._transaction() as conn:
            if event_ids:
                conn.executemany(
                    "UPDATE outbox_events SET status = ?, error = NULL WHERE id = ?",
                    [[OutboxEventStatus.PROCESSED.value, event_id.key] for event_id in event_ids],
                )
            if sent:
                conn.executemany(
                    """
                    INSERT INTO events_sent (id, idempotency_key, connector_id, sent_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    [
                        [
                            record.id.key,
                            record.id.idempotency_key,
                            str(record.connector_id) if record.connector_id else None,
                            _to_db(record.sent_at),
                        ]
                        for record in sent
                    ],
                )

    def outbox_mark_failed(
        self,
        event_id: EventID,
        retry_count: int,
        error: str,
        status: OutboxEventStatus = OutboxEventStatus.PENDING,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE outbox_events
                SET retry_count = ?, status = ?, error = ?, last_retry_at = ?
                WHERE id = ?
                """,
                [retry_count, status.value, error, _to_db(datetime.now(UTC)), event_id.key],
            )

    def outbox_delete_old_processed(self, cutoff: datetime) -> int:
        with self._transaction() as conn:
            return self._rowcount(
                conn,
                "DELETE FROM outbox_events WHERE status = ? AND created_at < ?",
                [OutboxEventStatus.PROCESSED.value, _to_db(cutoff)],
            )

    # Event ledger

    def events_sent_exists(self, event_id: EventID) -> bool:
        rows = self._fetchall("SELECT 1 FROM events_sent WHERE id = ?", [event_id.key])
        return bool(rows)

    def events_sent_upsert(self, record: EventSent) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO events_sent (id, idempotency_key, connector_id, sent_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (id) DO NOTHING
                """,
                [
                    record.id.key,
                    record.id.idempotency_key,
                    str(record.connector_id) if record.connector_id else None,
                    _to_db(record.sent_at),
                ],
            )

    # Deletion

    def batch_delete_by_connector(
        self, kind: EntityKind, connector_id: ConnectorID, batch_size: int
    ) -> int:
        """Delete up to `batch_size` rows of one kind for a connector.

        Returns:
            int: Rows deleted; 0 once nothing is left
        """
        table = kind.value
        with self._transaction() as conn:
            return self._rowcount(
                conn,
                f"DELETE FROM {table} WHERE id IN "  # noqa: S608
                f"(SELECT id FROM {table} WHERE connector_id = ? LIMIT ?)",
                [str(connector_id), batch_size],
            )


def open_storage(settings: PaySyncSettings | None = None) -> DuckDBStorage:
    """Open the storage configured for the current profile."""
    settings = settings or get_settings()
    return DuckDBStorage(settings.database.path)
