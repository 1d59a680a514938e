"""
Postgres reader for the curated source views.

Reads the approved-only views (vw_approved_*) using the SQLAlchemy 2.0 async
engine + asyncpg. The views are an external contract: they already filter to
approved, fully attributed rows, and this client does not re-check that.

The client is read-only. Transient connection drops are retried a few times
before the failure is surfaced as a SourceViewError.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import get_settings
from ..errors import SourceViewError

logger = structlog.get_logger(__name__)

_VIEW_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')
_COLUMN_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Hosted Postgres URLs often include ``channel_binding=require`` and
    ``sslmode=require`` which are libpq parameters. asyncpg rejects unknown
    connection params; SSL is passed via ``connect_args`` instead.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _wants_ssl(url: str) -> bool:
    params = parse_qs(urlparse(url).query)
    return params.get('sslmode', [''])[0] in {'require', 'verify-ca', 'verify-full'}


def _quote_identifier(name: str) -> str:
    """Double-quote a column name so mixed-case columns ("sourceDomain") survive."""
    if not _COLUMN_NAME.match(name):
        raise ValueError(f'Invalid column name: {name!r}')
    return f'"{name}"'


class PostgresClient:
    """
    Async read-only client for curated Postgres views.

    Usage:
        pg = PostgresClient(database_url)
        await pg.connect()
        rows = await pg.fetch_view('vw_approved_drugs')
    """

    def __init__(self, database_url: str | None = None):
        """
        Initialize with a Postgres connection URL.

        Args:
            database_url: Postgres connection URL (defaults to DATABASE_URL).
                          'postgres://' and 'postgresql://' are converted to
                          the asyncpg driver.
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. Idempotent — no-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url or get_settings().DATABASE_URL
        if not url:
            raise ValueError('database_url is required')

        ssl = _wants_ssl(url)
        url = _sanitize_url(url)

        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
        elif url.startswith('postgresql://') and '+asyncpg' not in url:
            url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)

        connect_args: dict[str, Any] = {}
        if ssl:
            connect_args['ssl'] = 'require'

        self._engine = create_async_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
            connect_args=connect_args,
        )
        logger.info('postgres_client.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected — call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_view(
        self,
        view: str,
        columns: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Read every row of a curated view.

        Args:
            view: View name, optionally schema-qualified (e.g. vw_approved_drugs)
            columns: Columns to select (default: all)

        Returns:
            Rows as plain dicts

        Raises:
            SourceViewError: If the view cannot be read
        """
        if not _VIEW_NAME.match(view):
            raise SourceViewError(f'Invalid view name: {view!r}', context={'view': view})

        try:
            select_list = ', '.join(_quote_identifier(c) for c in columns) if columns else '*'
        except ValueError as e:
            raise SourceViewError(str(e), context={'view': view}) from e

        return await self.fetch_query(f'SELECT {select_list} FROM {view}', context={'view': view})

    async def fetch_query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Run a read-only SQL statement.

        Raises:
            SourceViewError: If the query fails after retries
        """
        try:
            rows = await self._fetch(sql, params or {})
        except Exception as e:
            logger.error('postgres_client.query_failed', error=str(e), **(context or {}))
            raise SourceViewError(
                f'Source view query failed: {e}',
                context={**(context or {}), 'error_type': type(e).__name__},
            ) from e

        logger.debug('postgres_client.fetched', rows=len(rows), **(context or {}))
        return rows

    @retry(
        retry=retry_if_exception_type((OperationalError, InterfaceError, ConnectionError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _fetch(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), params)
            return [dict(row) for row in result.mappings().all()]
