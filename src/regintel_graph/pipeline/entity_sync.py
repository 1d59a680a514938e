"""
Primary entity sync: one curated view → nodes of one label.

Rows of a single entity type are merged through a bounded worker pool.
Each row targets its own merge key and a MERGE is atomic per statement, so
concurrent writes within one type are safe. Entity types themselves are
synced one after another by the backfill orchestrator.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from ..clients.postgres_client import PostgresClient
from ..cypher_templates import build_node_params
from ..errors import Neo4jConnectionError, PhaseError, SourceViewError
from ..logging import get_logger
from ..models.graph_model import MappingRule
from ..models.templates import NodeTemplate
from ..repository import GraphRepository

logger = get_logger(__name__)


@dataclass
class SyncedRow:
    """A row that was merged successfully, kept for extraction rules."""

    key: Any
    row: dict[str, Any]


@dataclass
class EntitySyncResult:
    """Outcome of syncing one entity type."""

    label: str
    view: str
    rows_found: int = 0
    rows_synced: int = 0
    nodes_created: int = 0
    synced: list[SyncedRow] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'label': self.label,
            'view': self.view,
            'rows_found': self.rows_found,
            'rows_synced': self.rows_synced,
            'nodes_created': self.nodes_created,
            'errors': self.errors,
        }


class EntitySyncer:
    """
    Syncs the rows of one curated view through a node template.

    Per-row failures (malformed rows, rejected writes) are recorded and the
    remaining rows continue. A lost connection to the graph store is not a
    row failure: it propagates once every in-flight row has settled.
    """

    def __init__(
        self,
        postgres: PostgresClient,
        repository: GraphRepository,
        max_workers: int = 8,
    ):
        """
        Initialize the syncer.

        Args:
            postgres: Connected source view reader
            repository: Graph repository for the target environment
            max_workers: Concurrent merges per entity type
        """
        self.postgres = postgres
        self.repository = repository
        self.max_workers = max_workers

    async def sync(
        self,
        rule: MappingRule,
        template: NodeTemplate,
        config_version: str,
        dry_run: bool = False,
        prepare_row: Callable[[dict[str, Any]], dict[str, Any]] | None = None,
    ) -> EntitySyncResult:
        """
        Read the rule's view and merge every row.

        Args:
            rule: Mapping rule naming the view and key strategy
            template: Node template generated from the rule
            config_version: Version stamped on created nodes
            dry_run: Count rows only; issue no writes
            prepare_row: Optional per-row enrichment before templating

        Returns:
            EntitySyncResult with counts and per-row errors

        Raises:
            PhaseError: If the source view cannot be read
            Neo4jConnectionError: If the graph store becomes unreachable
        """
        phase = f'entity_sync:{rule.node_label}'
        result = EntitySyncResult(label=rule.node_label, view=rule.postgres_view)

        try:
            rows = await self.postgres.fetch_view(rule.postgres_view)
        except SourceViewError as e:
            raise PhaseError(
                f'Failed to read {rule.postgres_view}: {e.message}',
                phase=phase,
                context={'view': rule.postgres_view},
            ) from e

        result.rows_found = len(rows)
        logger.info('entity_sync.rows_found', view=rule.postgres_view, rows=len(rows))

        if dry_run:
            return result

        semaphore = asyncio.Semaphore(self.max_workers)
        key_property = template.key_properties[0]

        async def _merge(row: dict[str, Any]) -> tuple[SyncedRow, int]:
            async with semaphore:
                prepared = prepare_row(row) if prepare_row else row
                params = build_node_params(template, rule, prepared, config_version)
                outcome = await self.repository.merge_node(template, params)
                return SyncedRow(key=params[key_property], row=prepared), outcome.nodes_created

        outcomes = await asyncio.gather(*(_merge(row) for row in rows), return_exceptions=True)

        connection_error: Neo4jConnectionError | None = None
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, Neo4jConnectionError):
                connection_error = connection_error or outcome
                continue
            if isinstance(outcome, Exception):
                error = PhaseError(
                    f'{rule.node_label} row {index} failed: {outcome}',
                    phase=phase,
                    context={'error_type': type(outcome).__name__},
                )
                result.errors.append(str(error))
                logger.warning('entity_sync.row_failed', row=index, error=str(outcome))
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            synced, created = outcome
            result.synced.append(synced)
            result.rows_synced += 1
            result.nodes_created += created

        if connection_error is not None:
            raise connection_error

        logger.info(
            'entity_sync.complete',
            view=rule.postgres_view,
            rows_synced=result.rows_synced,
            nodes_created=result.nodes_created,
            errors=len(result.errors),
        )
        return result
