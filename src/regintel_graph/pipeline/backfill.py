"""
Backfill orchestrator: curated Postgres views → environment-scoped graph.

Phases, in order (each depends on the graph state left by the ones before):
1. Primary entity sync: one view per entity type, types in a fixed order
2. Derived reference nodes: Agency, TherapeuticArea
3. Re-classification: qualifying news rows → SafetyAlert overlay nodes
4. Relationship inference: the ordered battery, then mapping-rule extractions

The run is not atomic. A failed phase is recorded on the SyncResult and
later phases still run; only an unreachable graph store raises. Re-running
against unchanged views creates nothing new, since every write is a MERGE.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..catalog import ENTITY_ORDER, ROW_PREPARERS, RowPreparer, regulatory_graph_config
from ..clients.neo4j_client import Neo4jClient
from ..clients.postgres_client import PostgresClient
from ..config import get_settings
from ..errors import Neo4jConnectionError, PhaseError
from ..logging import PhaseTimer, get_logger, logging_context
from ..models.environment import Environment
from ..models.graph_model import GraphConfig
from ..models.templates import CypherTemplates
from ..repository import GraphRepository
from ..utils import new_run_id
from .entity_sync import EntitySyncer, SyncedRow
from .reclassifier import SafetyAlertReclassifier
from .reference_nodes import ReferenceNodeBuilder
from .relationships import RelationshipInferrer

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Result of one backfill run. Inspect ``success`` and ``errors``."""

    environment: str
    dry_run: bool = False
    run_id: str | None = None

    # Rows found per entity label
    summary: dict[str, int] = field(default_factory=dict)

    # Statistics
    nodes_created: int = 0
    derived_nodes_created: int = 0
    relationships_created: int = 0
    relationship_passes: dict[str, int] = field(default_factory=dict)

    # Cooperative cancellation observed between phases
    cancelled: bool = False

    # Timing
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    phase_timings: dict[str, float] = field(default_factory=dict)

    # Error tracking (for partial success)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if every phase ran to completion without recorded errors."""
        return not self.errors and not self.cancelled

    @property
    def total_found(self) -> int:
        """Rows found across all entity views."""
        return sum(self.summary.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'run_id': self.run_id,
            'environment': self.environment,
            'dry_run': self.dry_run,
            'success': self.success,
            'cancelled': self.cancelled,
            'summary': self.summary,
            'total_found': self.total_found,
            'nodes_created': self.nodes_created,
            'derived_nodes_created': self.derived_nodes_created,
            'relationships_created': self.relationships_created,
            'relationship_passes': self.relationship_passes,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'processing_time_ms': self.processing_time_ms,
            'phase_timings': self.phase_timings,
            'errors': self.errors,
            'warnings': self.warnings,
        }


class BackfillPipeline:
    """
    Drives one full backfill per ``run_backfill`` call.

    Two runs against the same environment must not overlap; serialising
    them is the caller's responsibility.
    """

    def __init__(
        self,
        neo4j_client: Neo4jClient,
        postgres_client: PostgresClient,
        graph_config: GraphConfig | None = None,
        row_preparers: dict[str, RowPreparer] | None = None,
        entity_order: list[str] | None = None,
        regulatory_phases: bool | None = None,
        max_workers: int | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            neo4j_client: Graph store client
            postgres_client: Curated view reader
            graph_config: Graph model + mapping rules (defaults to the built-in
                          regulatory configuration)
            row_preparers: Per-label row enrichment before templating
            entity_order: Entity sync order (defaults to the mapping rule order,
                          or the regulatory order for the built-in configuration)
            regulatory_phases: Run the Agency / TherapeuticArea / SafetyAlert
                               phases and the inference battery (defaults to
                               True only for the built-in configuration)
            max_workers: Concurrent merges per entity type (defaults to SYNC_MAX_WORKERS)
        """
        builtin = graph_config is None
        self.neo4j = neo4j_client
        self.postgres = postgres_client
        self.graph_config = graph_config or regulatory_graph_config()
        self.row_preparers = row_preparers if row_preparers is not None else (ROW_PREPARERS if builtin else {})
        self.entity_order = entity_order or (
            list(ENTITY_ORDER) if builtin else [r.node_label for r in self.graph_config.mapping_rules]
        )
        self.regulatory_phases = builtin if regulatory_phases is None else regulatory_phases
        self.max_workers = max_workers or get_settings().SYNC_MAX_WORKERS

    @classmethod
    async def from_env(cls, graph_config: GraphConfig | None = None) -> BackfillPipeline:
        """
        Create a pipeline from environment variables.

        Expects:
            NEO4J_URI / NEO4J_PASSWORD (NEO4J_USERNAME, NEO4J_DATABASE optional)
            DATABASE_URL: Postgres URL holding the curated views

        Returns:
            Configured and connected BackfillPipeline
        """
        neo4j = Neo4jClient()
        await neo4j.connect()
        try:
            postgres = PostgresClient()
            await postgres.connect()
        except Exception:
            await neo4j.close()
            raise
        return cls(neo4j, postgres, graph_config=graph_config)

    async def close(self) -> None:
        """Close both clients."""
        await self.postgres.close()
        await self.neo4j.close()

    async def run_backfill(
        self,
        environment: Environment | str = Environment.STAGING,
        dry_run: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncResult:
        """
        Sync every approved record into ``environment``.

        Args:
            environment: Target environment
            dry_run: Count source rows only; issue no writes
            cancel_event: Checked between phases; when set, no further writes
                          are issued and the partial result is returned

        Returns:
            SyncResult (partial failures are recorded, never raised)

        Raises:
            Neo4jConnectionError: If the graph store is unreachable
        """
        env = Environment(environment)
        config = self.graph_config
        result = SyncResult(environment=env.value, dry_run=dry_run, run_id=new_run_id())
        timer = PhaseTimer()

        prefix = self.neo4j.prefix_for(env)
        templates = config.templates_for(env, prefix)
        result.warnings.extend(templates.warnings)
        repository = GraphRepository(self.neo4j, prefix, config.config_version)

        def cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
            return result.cancelled

        with logging_context(run_id=result.run_id, environment=env.value):
            logger.info(
                'backfill.started',
                dry_run=dry_run,
                config_version=config.config_version,
                entity_types=self.entity_order,
            )

            try:
                synced_rows = await self._sync_entities(
                    repository, templates, result, timer, dry_run, cancelled
                )

                if not dry_run and self.regulatory_phases:
                    await self._derived_phases(repository, result, timer, cancelled)

                if not dry_run:
                    await self._relationship_phases(repository, templates, synced_rows, result, timer, cancelled)
            except Neo4jConnectionError as e:
                logger.error('backfill.connection_lost', error=str(e))
                raise
            finally:
                result.completed_at = datetime.now()
                result.processing_time_ms = int(timer.total_ms)
                result.phase_timings = timer.stages.copy()

            if result.cancelled:
                logger.warning('backfill.cancelled', **timer.summary())

            logger.info(
                'backfill.complete',
                success=result.success,
                summary=result.summary,
                nodes_created=result.nodes_created,
                derived_nodes_created=result.derived_nodes_created,
                relationships=result.relationships_created,
                errors=len(result.errors),
                **timer.summary(),
            )

        return result

    # =========================================================================
    # Phases
    # =========================================================================

    async def _sync_entities(
        self,
        repository: GraphRepository,
        templates: CypherTemplates,
        result: SyncResult,
        timer: PhaseTimer,
        dry_run: bool,
        cancelled: Callable[[], bool],
    ) -> dict[str, list[SyncedRow]]:
        syncer = EntitySyncer(self.postgres, repository, self.max_workers)
        synced_rows: dict[str, list[SyncedRow]] = {}

        for label in self.entity_order:
            if cancelled():
                break

            rule = self.graph_config.get_rule(label)
            template = templates.nodes.get(label)
            if rule is None or template is None:
                result.warnings.append(f'No node template for {label}; entity type skipped')
                continue

            with logging_context(entity_type=label), timer.stage(f'entity_sync:{label}'):
                try:
                    entity = await syncer.sync(
                        rule,
                        template,
                        self.graph_config.config_version,
                        dry_run=dry_run,
                        prepare_row=self.row_preparers.get(label),
                    )
                except PhaseError as e:
                    result.summary[label] = 0
                    result.errors.append(str(e))
                    logger.error('backfill.entity_sync_failed', error=str(e))
                    continue

            result.summary[label] = entity.rows_found
            result.nodes_created += entity.nodes_created
            result.errors.extend(entity.errors)
            synced_rows[label] = entity.synced

        return synced_rows

    async def _derived_phases(
        self,
        repository: GraphRepository,
        result: SyncResult,
        timer: PhaseTimer,
        cancelled: Callable[[], bool],
    ) -> None:
        builder = ReferenceNodeBuilder(self.postgres, repository)
        reclassifier = SafetyAlertReclassifier(self.postgres, repository)

        for name, run in (
            ('agencies', builder.create_agencies),
            ('therapeutic_areas', builder.create_therapeutic_areas),
            ('safety_alerts', reclassifier.run),
        ):
            if cancelled():
                return
            outcome = await self._run_phase(name, run, result, timer)
            if outcome is not None:
                result.derived_nodes_created += outcome.nodes_created
                result.errors.extend(outcome.errors)

    async def _relationship_phases(
        self,
        repository: GraphRepository,
        templates: CypherTemplates,
        synced_rows: dict[str, list[SyncedRow]],
        result: SyncResult,
        timer: PhaseTimer,
        cancelled: Callable[[], bool],
    ) -> None:
        inferrer = RelationshipInferrer(repository)

        if self.regulatory_phases:
            if cancelled():
                return
            battery = await self._run_phase(
                'relationship_inference',
                lambda: inferrer.run_battery(should_stop=cancelled),
                result,
                timer,
            )
            if battery is not None:
                counts, errors = battery
                result.relationship_passes.update(counts)
                result.errors.extend(errors)

        if templates.extractions:
            if cancelled():
                return
            rules = {}
            for label in synced_rows:
                rule = self.graph_config.get_rule(label)
                if rule is not None and rule.relationships:
                    rules[label] = rule
            extracted = await self._run_phase(
                'relationship_extraction',
                lambda: inferrer.run_extractions(
                    templates, synced_rows, rules, self.graph_config.config_version
                ),
                result,
                timer,
            )
            if extracted is not None:
                counts, errors = extracted
                result.relationship_passes.update(counts)
                result.errors.extend(errors)

        result.relationships_created = sum(result.relationship_passes.values())

    async def _run_phase(
        self,
        name: str,
        run: Callable[[], Awaitable[Any]],
        result: SyncResult,
        timer: PhaseTimer,
    ) -> Any:
        """Run one phase, recording (not raising) anything but a lost connection."""
        with timer.stage(name):
            try:
                return await run()
            except Neo4jConnectionError:
                raise
            except PhaseError as e:
                result.errors.append(str(e))
                logger.error('backfill.phase_failed', phase=name, error=str(e))
            except Exception as e:
                error = PhaseError(
                    f'Phase {name} failed: {e}',
                    phase=name,
                    context={'error_type': type(e).__name__},
                )
                result.errors.append(str(error))
                logger.error('backfill.phase_failed', phase=name, error=str(e), error_type=type(e).__name__)
        return None


async def run_backfill(
    environment: Environment | str = Environment.STAGING,
    dry_run: bool = False,
    cancel_event: asyncio.Event | None = None,
    graph_config: GraphConfig | None = None,
) -> SyncResult:
    """
    One-shot backfill using clients configured from the environment.

    Raises:
        Neo4jConnectionError: If the graph store is unreachable
    """
    pipeline = await BackfillPipeline.from_env(graph_config=graph_config)
    try:
        return await pipeline.run_backfill(environment, dry_run=dry_run, cancel_event=cancel_event)
    finally:
        await pipeline.close()
