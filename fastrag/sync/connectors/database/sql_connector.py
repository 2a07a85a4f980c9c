"""
SQL Database Connector.

Provides connector for synchronizing rows from a SQL table or custom query
through a SQLAlchemy engine, with incremental sync on a timestamp column.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    DateTime,
    MetaData,
    Table,
    bindparam,
    create_engine,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.exc import (
    ArgumentError,
    InterfaceError,
    NoSuchTableError,
    OperationalError,
    ProgrammingError,
)

from fastrag.config.settings import ConnectorSettings
from fastrag.sync.connectors.base import (
    ConnectionStatus,
    ConnectorFactory,
    ConnectorRuntime,
    FetchOutcome,
)
from fastrag.sync.connectors.normalizer import ResponseNormalizer
from fastrag.sync.errors import (
    DataSourceConnectionError,
    DataSourceError,
    classify_exception,
    invalid_config,
)
from fastrag.sync.models import (
    ConnectorMetrics,
    Content,
    DataSource,
    DataSourceHealth,
    DataSourceType,
    SyncResult,
)

logger = logging.getLogger(__name__)

PAGED_QUERY_TEMPLATE = "SELECT * FROM ({query}) AS source_query LIMIT :limit OFFSET :offset"
COUNT_QUERY_TEMPLATE = "SELECT COUNT(*) FROM ({query}) AS source_query"


def classify_database_error(error: BaseException, source_id: Optional[str] = None) -> DataSourceError:
    """Map SQLAlchemy failures to DataSourceError."""
    if isinstance(error, DataSourceError):
        return error

    if isinstance(error, (NoSuchTableError, ArgumentError, ProgrammingError)):
        classified = invalid_config(f"Invalid database query or table: {error}", source_id)
        classified.cause = error
        return classified

    if isinstance(error, ImportError):
        classified = invalid_config(f"Database driver is not installed: {error}", source_id)
        classified.cause = error
        return classified

    if isinstance(error, (OperationalError, InterfaceError)):
        return DataSourceConnectionError(
            f"Database connection failed: {error.orig or error}",
            source_id,
            cause=error
        )

    return classify_exception(error, source_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return None
    return value


class DatabaseConnector:
    """
    SQL database connector.

    Supports:
    - Any SQLAlchemy dialect reachable through a connection string
    - Table mode with reflection, or a custom query
    - Incremental sync via incremental_field (table) or a :since bind (query)
    - LIMIT/OFFSET batches under the request cap
    """

    def __init__(
        self,
        data_source: DataSource,
        settings: Optional[ConnectorSettings] = None
    ):
        if data_source.type != DataSourceType.DATABASE:
            raise invalid_config(
                f"DatabaseConnector cannot serve a {data_source.type.value} data source",
                data_source.id
            )
        data_source.config.validate_for(DataSourceType.DATABASE, data_source.id)

        self.data_source = data_source
        self.db_config = data_source.config
        self.runtime = ConnectorRuntime(
            data_source,
            settings,
            classifier=classify_database_error,
            logger_name=__name__
        )
        self.settings = self.runtime.settings
        self.normalizer = ResponseNormalizer(
            data_source.id,
            source_type=DataSourceType.DATABASE.value,
            fetch_metadata=(
                {"table": self.db_config.table} if self.db_config.table
                else {"query": self.db_config.query}
            ),
            log=self.runtime.log
        )
        self._engine: Optional[Engine] = None
        self._table: Optional[Table] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _url(self) -> URL:
        """Connection URL with credentials applied for networked databases."""
        url = make_url(self.db_config.connection_string)
        credentials = self.db_config.credentials
        if url.host and not url.username and credentials:
            url = url.set(username=credentials.username, password=credentials.password)
        return url

    def _create_engine(self) -> Engine:
        url = self._url()
        if url.get_backend_name() == "sqlite":
            return create_engine(url, connect_args={"check_same_thread": False})
        return create_engine(
            url,
            pool_pre_ping=True,
            pool_timeout=self.runtime.timeout
        )

    def _get_engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
            self.runtime.log.debug(
                f"Created engine for {self._engine.url.render_as_string(hide_password=True)}"
            )
        return self._engine

    def _select_one(self) -> int:
        with self._get_engine().connect() as conn:
            return conn.execute(text("SELECT 1")).scalar()

    async def _probe(self) -> int:
        return await asyncio.to_thread(self._select_one)

    async def connect(self) -> None:
        """Create the engine and run SELECT 1."""
        try:
            await self.runtime.connect(self._probe)
        except DataSourceError:
            self._dispose()
            raise

    def _dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._table = None

    async def disconnect(self) -> None:
        """Dispose of the engine and its pool."""
        self._dispose()
        self.runtime.set_status(ConnectionStatus.DISCONNECTED)
        self.runtime.log.info("Database connections closed")

    async def validate_connection(self) -> bool:
        try:
            await self.runtime.execute(self._probe, single_attempt=True)
            return True
        except DataSourceError as e:
            self.runtime.log.warning(f"Connection validation failed: {e}")
            return False

    async def health_check(self) -> DataSourceHealth:
        """Run SELECT 1 once."""
        return await self.runtime.health_check(self._probe)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _reflect_table(self) -> Table:
        if self._table is None:
            self._table = Table(self.db_config.table, MetaData(), autoload_with=self._get_engine())
        return self._table

    def _table_statement(self, since: Optional[datetime]):
        table = self._reflect_table()
        stmt = select(table)

        field = self.db_config.incremental_field
        if field:
            if field not in table.c:
                raise invalid_config(
                    f"Incremental field '{field}' not found in table {self.db_config.table}",
                    self.data_source.id
                )
            if since:
                stmt = stmt.where(table.c[field] > since)
            stmt = stmt.order_by(table.c[field])
        elif table.primary_key.columns:
            stmt = stmt.order_by(*table.primary_key.columns)

        return stmt

    def _query_statement(self, since: Optional[datetime], template: str = "{query}"):
        """
        Wrap the custom query in template and bind :since when it is used.

        A full sync binds the epoch so the same query serves both modes.
        """
        query = self.db_config.query.strip().rstrip(";")
        stmt = text(template.format(query=query))

        if ":since" not in query:
            if since:
                self.runtime.log.debug("Query has no :since parameter; running a full fetch")
            return stmt, {}

        since_value = since or datetime(1970, 1, 1, tzinfo=timezone.utc)
        stmt = stmt.bindparams(bindparam("since", type_=DateTime(timezone=True)))
        return stmt, {"since": since_value}

    def _fetch_batch(self, since: Optional[datetime], offset: int, limit: int) -> List[Dict[str, Any]]:
        """Read one batch of rows as dictionaries."""
        engine = self._get_engine()

        if self.db_config.table:
            stmt = self._table_statement(since).limit(limit).offset(offset)
            params: Dict[str, Any] = {}
        else:
            stmt, params = self._query_statement(since, PAGED_QUERY_TEMPLATE)
            params.update(limit=limit, offset=offset)

        with engine.connect() as conn:
            result = conn.execute(stmt, params)
            return [
                {key: _jsonable(value) for key, value in row._mapping.items()}
                for row in result
            ]

    async def _fetch(self, since: Optional[datetime]) -> FetchOutcome:
        await self.connect()

        batch_size = self.runtime.batch_size
        max_requests = self.settings.max_pagination_requests
        outcome = FetchOutcome()
        offset = 0
        has_more = True

        while has_more and outcome.requests < max_requests:
            rows = await self.runtime.execute(
                lambda: asyncio.to_thread(self._fetch_batch, since, offset, batch_size)
            )
            page = self.normalizer.normalize(rows)
            outcome.contents.extend(page.contents)
            outcome.requests += 1

            has_more = len(rows) >= batch_size
            offset += len(rows)

            self.runtime.log.debug(
                f"Fetched batch {outcome.requests}: {len(rows)} rows, "
                f"total {len(outcome.contents)} documents"
            )

        if has_more:
            outcome.truncated = True
            self.runtime.log.warning(
                f"Reached maximum request limit ({max_requests}) during content fetch"
            )

        return outcome

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _describe(self) -> Dict[str, Any]:
        engine = self._get_engine()
        metadata: Dict[str, Any] = {
            "dialect": engine.dialect.name,
            "tables": inspect(engine).get_table_names(),
        }

        with engine.connect() as conn:
            if self.db_config.table:
                table = self._reflect_table()
                count_stmt = select(func.count()).select_from(table)
                metadata["table"] = self.db_config.table
                metadata["columns"] = [column.name for column in table.columns]
                metadata["row_count"] = conn.execute(count_stmt).scalar()
            else:
                count_stmt, params = self._query_statement(None, COUNT_QUERY_TEMPLATE)
                metadata["row_count"] = conn.execute(count_stmt, params).scalar()

        return metadata

    async def get_database_metadata(self) -> Dict[str, Any]:
        """Report dialect, table names and the number of source rows."""
        await self.connect()
        return await self.runtime.execute(lambda: asyncio.to_thread(self._describe))

    # ------------------------------------------------------------------
    # Sync and accessors
    # ------------------------------------------------------------------

    async def sync(self, incremental: bool = True) -> SyncResult:
        """Sync all documents, or only those changed since last_sync."""
        return await self.runtime.run_sync(self.connect, self._fetch, incremental)

    async def get_content(self, last_sync: Optional[datetime] = None) -> List[Content]:
        """Fetch every document changed after last_sync (all when None)."""
        return (await self._fetch(last_sync)).contents

    @property
    def status(self) -> ConnectionStatus:
        return self.runtime.status

    def get_connection_status(self) -> bool:
        return self.runtime.is_connected

    def get_metrics(self) -> ConnectorMetrics:
        return self.runtime.metrics.snapshot()

    def reset_metrics(self) -> None:
        self.runtime.metrics.reset()

    def get_data_source(self) -> DataSource:
        return self.data_source.model_copy(deep=True)

    def get_last_health_check(self) -> Optional[datetime]:
        return self.runtime.last_health_check

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()


# Register connector
ConnectorFactory.register(DataSourceType.DATABASE, DatabaseConnector)
