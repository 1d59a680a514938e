"""
Neo4j client wrapper for the RegIntel graph sync engine.

Handles:
- Connection management with the async driver (bounded pool acquisition)
- Environment-aware read / write / multi-statement transaction dispatch
- Label-prefix rewriting for caller-supplied, environment-agnostic queries
- Health checks and per-environment statistics

The client never decides what to write, and it does not retry connection
failures: they surface as Neo4jConnectionError and the caller picks a policy.
Transient errors inside a managed transaction are retried by the driver up
to NEO4J_MAX_TRANSACTION_RETRY_SECONDS.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from neo4j import READ_ACCESS, WRITE_ACCESS, AsyncDriver, AsyncGraphDatabase, AsyncSession

from ..config import get_settings
from ..errors import Neo4jError, wrap_neo4j_error
from ..logging import get_logger
from ..models.environment import (
    Environment,
    add_label_prefix,
    label_prefix,
    scope_predicate,
)

logger = get_logger(__name__)


@dataclass
class WriteOutcome:
    """Records and update counters from one write statement."""

    records: list[dict[str, Any]] = field(default_factory=list)
    nodes_created: int = 0
    relationships_created: int = 0
    properties_set: int = 0


Statement = tuple[str, dict[str, Any]]


class Neo4jClient:
    """
    Async Neo4j client with environment label prefixing.

    Configuration via environment variables (see config.Settings):
    - NEO4J_URI: Database URI (e.g., bolt://localhost:7687)
    - NEO4J_USERNAME: Username (default: neo4j)
    - NEO4J_PASSWORD: Password
    - NEO4J_DATABASE: Database name (default: regintel)
    - NEO4J_MAX_POOL_SIZE / NEO4J_ACQUISITION_TIMEOUT_SECONDS: pool bounds
    """

    def __init__(
        self,
        uri: str | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str | None = None,
        label_prefixes: dict[Environment, str] | None = None,
        max_pool_size: int | None = None,
        acquisition_timeout: float | None = None,
    ):
        """
        Initialize the Neo4j client.

        Args:
            uri: Neo4j URI (defaults to NEO4J_URI)
            username: Username (defaults to NEO4J_USERNAME)
            password: Password (defaults to NEO4J_PASSWORD)
            database: Database name (defaults to NEO4J_DATABASE)
            label_prefixes: Environment → label prefix table (defaults to settings)
            max_pool_size: Connection pool size (defaults to NEO4J_MAX_POOL_SIZE)
            acquisition_timeout: Seconds to wait for a pooled connection
        """
        settings = get_settings()
        self.uri = uri or settings.NEO4J_URI
        self.username = username or settings.NEO4J_USERNAME
        self.password = password or settings.NEO4J_PASSWORD
        self.database = database or settings.NEO4J_DATABASE
        self.max_pool_size = max_pool_size or settings.NEO4J_MAX_POOL_SIZE
        self.acquisition_timeout = acquisition_timeout or settings.NEO4J_ACQUISITION_TIMEOUT_SECONDS
        self.max_transaction_retry_time = settings.NEO4J_MAX_TRANSACTION_RETRY_SECONDS

        if not self.uri:
            raise ValueError('NEO4J_URI environment variable is required')
        if not self.password:
            raise ValueError('NEO4J_PASSWORD environment variable is required')

        self.label_prefixes = label_prefixes or {
            Environment.STAGING: label_prefix(Environment.STAGING),
            Environment.PRODUCTION: label_prefix(Environment.PRODUCTION),
        }
        self._driver: AsyncDriver | None = None

    def prefix_for(self, environment: Environment | str) -> str:
        """Label prefix used for ``environment``."""
        return label_prefix(environment, self.label_prefixes)

    def rewrite_query(self, query: str, environment: Environment | str) -> str:
        """Apply the environment's label prefix to a raw query."""
        return add_label_prefix(query, self.prefix_for(environment))

    async def connect(self) -> None:
        """
        Establish connection to Neo4j.

        Raises:
            Neo4jConnectionError: If the store is unreachable or auth fails
        """
        if self._driver is not None:
            return

        driver = AsyncGraphDatabase.driver(
            self.uri,
            auth=(self.username, self.password),
            max_connection_pool_size=self.max_pool_size,
            connection_acquisition_timeout=self.acquisition_timeout,
            max_transaction_retry_time=self.max_transaction_retry_time,
        )
        try:
            await driver.verify_connectivity()
        except Exception as e:
            await driver.close()
            raise wrap_neo4j_error(e, {'uri': self.uri}) from e

        self._driver = driver
        logger.info('neo4j_client.connected', uri=self.uri, database=self.database)

    async def close(self) -> None:
        """Close the database connection."""
        if self._driver:
            await self._driver.close()
            self._driver = None
            logger.info('neo4j_client.closed')

    @asynccontextmanager
    async def session(self, access_mode: str = WRITE_ACCESS) -> AsyncIterator[AsyncSession]:
        """Session scoped to one access mode, closed on every exit path."""
        if self._driver is None:
            await self.connect()
        async with self._driver.session(
            database=self.database,
            default_access_mode=access_mode,
        ) as session:
            yield session

    # =========================================================================
    # Statement dispatch
    # =========================================================================

    async def execute_read(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        environment: Environment | str = Environment.STAGING,
    ) -> list[dict[str, Any]]:
        """
        Execute a read-only query after applying the environment label prefix.

        Args:
            query: Environment-agnostic Cypher
            parameters: Query parameters
            environment: Target environment

        Returns:
            List of result records as dicts
        """
        statement = self.rewrite_query(query, environment)

        async def _read_tx(tx):
            result = await tx.run(statement, parameters or {})
            return await result.data()

        try:
            async with self.session(READ_ACCESS) as session:
                return await session.execute_read(_read_tx)
        except Neo4jError:
            raise
        except Exception as e:
            raise wrap_neo4j_error(e, {'access_mode': 'read'}) from e

    async def execute_write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        environment: Environment | str = Environment.STAGING,
    ) -> list[dict[str, Any]]:
        """
        Execute a raw write query after applying the environment label prefix.

        Returns:
            List of result records as dicts
        """
        statement = self.rewrite_query(query, environment)
        outcome = await self._write(statement, parameters)
        return outcome.records

    async def execute_prefixed_write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> WriteOutcome:
        """
        Execute a write whose labels already carry the environment prefix.

        Used for generated templates and pipeline statements: the text is
        sent as-is, never rewritten.
        """
        return await self._write(query, parameters)

    async def execute_transaction(
        self,
        statements: list[Statement],
        environment: Environment | str = Environment.STAGING,
        rewrite: bool = True,
    ) -> list[WriteOutcome]:
        """
        Execute several statements in one write transaction.

        Args:
            statements: (query, parameters) pairs, run in order
            environment: Target environment
            rewrite: Apply label prefixing (False for pre-prefixed statements)

        Returns:
            One WriteOutcome per statement
        """
        prepared = [
            (self.rewrite_query(query, environment) if rewrite else query, params or {})
            for query, params in statements
        ]

        async def _tx(tx):
            outcomes = []
            for query, params in prepared:
                result = await tx.run(query, params)
                outcomes.append(await _collect(result))
            return outcomes

        try:
            async with self.session(WRITE_ACCESS) as session:
                return await session.execute_write(_tx)
        except Neo4jError:
            raise
        except Exception as e:
            raise wrap_neo4j_error(e, {'access_mode': 'write', 'statements': len(prepared)}) from e

    async def _write(
        self,
        query: str,
        parameters: dict[str, Any] | None,
    ) -> WriteOutcome:
        async def _write_tx(tx):
            result = await tx.run(query, parameters or {})
            return await _collect(result)

        try:
            async with self.session(WRITE_ACCESS) as session:
                return await session.execute_write(_write_tx)
        except Neo4jError:
            raise
        except Exception as e:
            raise wrap_neo4j_error(e, {'access_mode': 'write'}) from e

    # =========================================================================
    # Health & statistics
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Verify connectivity and run a trivial read.

        Returns:
            True if the store answered; never raises
        """
        try:
            if self._driver is None:
                await self.connect()
            await self._driver.verify_connectivity()
            records = await self.execute_read('RETURN 1 AS health', environment=Environment.PRODUCTION)
            return len(records) > 0
        except Exception as e:
            logger.warning('neo4j_client.health_check_failed', error=str(e))
            return False

    async def get_statistics(
        self,
        environment: Environment | str = Environment.STAGING,
    ) -> dict[str, Any]:
        """
        Node, relationship and per-label counts for one environment.

        Returns:
            Dict with 'node_count', 'relationship_count', 'label_counts'
        """
        scope, params = scope_predicate('n', environment, self.label_prefixes)

        node_rows = await self.execute_read(
            f'MATCH (n) WHERE {scope} RETURN count(n) AS count',
            params,
            environment,
        )
        rel_rows = await self.execute_read(
            f'MATCH (n)-[r]->() WHERE {scope} RETURN count(r) AS count',
            params,
            environment,
        )
        label_rows = await self.execute_read(
            'CALL db.labels() YIELD label '
            'CALL { WITH label MATCH (n) WHERE label IN labels(n) RETURN count(n) AS count } '
            'RETURN label, count',
            {},
            environment,
        )

        label_counts = {
            row['label']: row['count']
            for row in label_rows
            if self._label_in_scope(row['label'], environment) and row['count']
        }

        return {
            'node_count': node_rows[0]['count'] if node_rows else 0,
            'relationship_count': rel_rows[0]['count'] if rel_rows else 0,
            'label_counts': label_counts,
        }

    def _label_in_scope(self, label: str, environment: Environment | str) -> bool:
        env = Environment(environment)
        staging = self.prefix_for(Environment.STAGING)
        if env is Environment.STAGING:
            return label.startswith(staging)
        production = self.prefix_for(Environment.PRODUCTION)
        if production:
            return label.startswith(production)
        return not label.startswith(staging)


async def _collect(result) -> WriteOutcome:
    """Drain a result into a WriteOutcome."""
    records = await result.data()
    summary = await result.consume()
    counters = summary.counters
    return WriteOutcome(
        records=records,
        nodes_created=counters.nodes_created,
        relationships_created=counters.relationships_created,
        properties_set=counters.properties_set,
    )
