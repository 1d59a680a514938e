"""
Graph invariant auditing.

A fixed battery of environment-scoped read queries:

- approved-only: nodes whose approvalStatus is set to anything but APPROVED
- approval completeness: nodes missing approvalStatus, approvedBy or approvedAt
- orphan relationships: relationships leaving the environment's scope
- duplicate keys: per label, key values held by more than one node (advisory)

The store does not allow dangling relationships, so the orphan check looks
for the failure mode that can actually happen: an inference pass matching an
endpoint outside the environment (a production node linked from staging, or
the reverse).

Validation never writes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .catalog import regulatory_graph_config
from .clients.neo4j_client import Neo4jClient
from .cypher_templates import APPROVAL_STATUS_APPROVED
from .logging import get_logger
from .models.environment import Environment, prefixed_label, scope_predicate
from .models.graph_model import GraphConfig, NodeSpec

logger = get_logger(__name__)


@dataclass
class DuplicateKey:
    """A key value shared by several nodes of one label."""

    label: str
    key_property: str
    key: Any
    count: int


@dataclass
class ValidationReport:
    """Structured findings of one validation run."""

    environment: str
    non_approved_count: int = 0
    missing_approval_metadata: int = 0
    orphan_relationships: int = 0
    duplicate_keys: list[DuplicateKey] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.now)

    @property
    def passed(self) -> bool:
        """Duplicate keys are advisory and do not fail the report."""
        return (
            self.non_approved_count == 0
            and self.missing_approval_metadata == 0
            and self.orphan_relationships == 0
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'environment': self.environment,
            'passed': self.passed,
            'non_approved_count': self.non_approved_count,
            'missing_approval_metadata': self.missing_approval_metadata,
            'orphan_relationships': self.orphan_relationships,
            'duplicate_keys': [
                {'label': d.label, 'key_property': d.key_property, 'key': d.key, 'count': d.count}
                for d in self.duplicate_keys
            ],
            'checked_at': self.checked_at.isoformat(),
        }


class GraphValidator:
    """Runs the invariant battery against one environment."""

    def __init__(self, neo4j_client: Neo4jClient, graph_config: GraphConfig | None = None):
        """
        Initialize the validator.

        Args:
            neo4j_client: Connected Neo4j client
            graph_config: Model whose key properties are checked for duplicates
                          (defaults to the built-in regulatory configuration)
        """
        self.neo4j = neo4j_client
        self.graph_config = graph_config or regulatory_graph_config()

    async def run_validation(self, environment: Environment | str = Environment.STAGING) -> ValidationReport:
        """
        Audit the approval contract and graph hygiene of ``environment``.

        Returns:
            ValidationReport; inspect ``passed``
        """
        env = Environment(environment)
        report = ValidationReport(environment=env.value)

        report.non_approved_count = await self.count_non_approved(env)
        report.missing_approval_metadata = await self.count_missing_approval_metadata(env)
        report.orphan_relationships = await self.count_orphan_relationships(env)
        for node in self.graph_config.nodes:
            report.duplicate_keys.extend(await self.find_duplicate_keys(node, env))

        log = logger.info if report.passed else logger.warning
        log(
            'validation.complete',
            environment=env.value,
            passed=report.passed,
            non_approved=report.non_approved_count,
            missing_metadata=report.missing_approval_metadata,
            orphans=report.orphan_relationships,
            duplicate_keys=len(report.duplicate_keys),
        )
        return report

    # =========================================================================
    # Checks
    # =========================================================================

    async def count_non_approved(self, environment: Environment) -> int:
        scope, params = scope_predicate('n', environment, self.neo4j.label_prefixes)
        query = f"""
            MATCH (n)
            WHERE {scope}
              AND n.approvalStatus IS NOT NULL
              AND n.approvalStatus <> $approved
            RETURN count(n) AS count
        """
        return await self._count(query, {**params, 'approved': APPROVAL_STATUS_APPROVED}, environment)

    async def count_missing_approval_metadata(self, environment: Environment) -> int:
        scope, params = scope_predicate('n', environment, self.neo4j.label_prefixes)
        query = f"""
            MATCH (n)
            WHERE {scope}
              AND (n.approvalStatus IS NULL
                   OR n.approvedBy IS NULL
                   OR n.approvedAt IS NULL)
            RETURN count(n) AS count
        """
        return await self._count(query, params, environment)

    async def count_orphan_relationships(self, environment: Environment) -> int:
        source_scope, params = scope_predicate('n', environment, self.neo4j.label_prefixes)
        target_scope, _ = scope_predicate('m', environment, self.neo4j.label_prefixes)
        query = f"""
            MATCH (n)-[r]->(m)
            WHERE {source_scope}
              AND NOT {target_scope}
            RETURN count(r) AS count
        """
        return await self._count(query, params, environment)

    async def find_duplicate_keys(self, node: NodeSpec, environment: Environment) -> list[DuplicateKey]:
        """Key values of ``node`` held by more than one node."""
        label = prefixed_label(node.label, self.neo4j.prefix_for(environment))
        query = f"""
            MATCH (n:`{label}`)
            WHERE n.`{node.key_property}` IS NOT NULL
            WITH n.`{node.key_property}` AS key, count(n) AS total
            WHERE total > 1
            RETURN key, total
            ORDER BY total DESC
        """
        records = await self.neo4j.execute_read(query, {}, environment)
        return [
            DuplicateKey(label=node.label, key_property=node.key_property, key=r['key'], count=r['total'])
            for r in records
        ]

    async def _count(self, query: str, params: dict[str, Any], environment: Environment) -> int:
        records = await self.neo4j.execute_read(query, params, environment)
        return records[0]['count'] if records else 0


async def run_validation(
    environment: Environment | str = Environment.STAGING,
    graph_config: GraphConfig | None = None,
) -> ValidationReport:
    """One-shot validation using a Neo4j client configured from the environment."""
    neo4j = Neo4jClient()
    await neo4j.connect()
    try:
        return await GraphValidator(neo4j, graph_config).run_validation(environment)
    finally:
        await neo4j.close()
