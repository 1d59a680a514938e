"""
Graph repository for the writes the backfill pipeline issues.

Provides:
- Primary entity merges through generated node templates
- Derived reference nodes (Agency, TherapeuticArea)
- SafetyAlert overlay nodes re-classified from news rows
- Relationship inference passes and per-row extraction merges

Every statement here already embeds its environment-prefixed labels, so all
writes go through Neo4jClient.execute_prefixed_write and are never rewritten.
"""

from datetime import datetime
from typing import Any

from .clients.neo4j_client import Neo4jClient, WriteOutcome
from .cypher_templates import APPROVAL_STATUS_APPROVED, DEFAULT_APPROVER
from .models.environment import prefixed_label
from .models.templates import NodeTemplate, RelationshipTemplate


class GraphRepository:
    """
    Merge operations for one target environment.

    Handles:
    - Template-driven node merges
    - Reference / overlay node merges carrying the approval contract
    - Inference passes returning their relationship counts
    """

    def __init__(self, neo4j_client: Neo4jClient, prefix: str, config_version: str):
        """
        Initialize the repository.

        Args:
            neo4j_client: Connected Neo4j client
            prefix: Label prefix of the target environment
            config_version: Version stamped on everything written
        """
        self.neo4j = neo4j_client
        self.prefix = prefix
        self.config_version = config_version

    def label(self, name: str) -> str:
        """Environment-prefixed label."""
        return prefixed_label(name, self.prefix)

    # =========================================================================
    # Primary entities
    # =========================================================================

    async def merge_node(self, template: NodeTemplate, params: dict[str, Any]) -> WriteOutcome:
        """
        Merge one source row through its node template.

        Args:
            template: Generated node template (labels already prefixed)
            params: Output of build_node_params

        Returns:
            WriteOutcome; nodes_created is 0 when the key already existed
        """
        return await self.neo4j.execute_prefixed_write(template.cypher, params)

    # =========================================================================
    # Derived reference nodes
    # =========================================================================

    async def merge_agency(self, code: str, name: str, domain: str) -> WriteOutcome:
        """
        Ensure an Agency node exists for a normalized agency code.

        Args:
            code: Upper-cased agency code (merge key)
            name: Display name (used if creating)
            domain: Agency web domain, used by domain-containment passes
        """
        query = f"""
            MERGE (a:{self.label('Agency')} {{code: $code}})
            ON CREATE SET
                a.name = $name,
                a.domain = $domain,
                a.approvalStatus = '{APPROVAL_STATUS_APPROVED}',
                a.approvedBy = $approvedBy,
                a.approvedAt = datetime(),
                a.configVersion = $configVersion,
                a.syncedAt = datetime()
            ON MATCH SET
                a.domain = CASE WHEN coalesce(a.domain, '') = '' THEN $domain ELSE a.domain END,
                a.updatedAt = datetime(),
                a.lastSyncedAt = datetime()
            RETURN a.code AS key
        """
        return await self.neo4j.execute_prefixed_write(
            query,
            {
                'code': code,
                'name': name,
                'domain': domain,
                'approvedBy': DEFAULT_APPROVER,
                'configVersion': self.config_version,
            },
        )

    async def merge_therapeutic_area(self, name: str, category: str) -> WriteOutcome:
        """Ensure a TherapeuticArea node exists for a canonical area name."""
        query = f"""
            MERGE (ta:{self.label('TherapeuticArea')} {{name: $name}})
            ON CREATE SET
                ta.category = $category,
                ta.approvalStatus = '{APPROVAL_STATUS_APPROVED}',
                ta.approvedBy = $approvedBy,
                ta.approvedAt = datetime(),
                ta.configVersion = $configVersion,
                ta.syncedAt = datetime()
            ON MATCH SET
                ta.updatedAt = datetime(),
                ta.lastSyncedAt = datetime()
            RETURN ta.name AS key
        """
        return await self.neo4j.execute_prefixed_write(
            query,
            {
                'name': name,
                'category': category,
                'approvedBy': DEFAULT_APPROVER,
                'configVersion': self.config_version,
            },
        )

    # =========================================================================
    # Re-classification
    # =========================================================================

    async def merge_safety_alert(
        self,
        alert_id: str,
        title: str,
        published_date: datetime | None,
        alert_type: str,
        severity: str,
        drug_name_raw: str,
        url: str | None,
        source_domain: str,
        approved_by: str,
        approved_at: datetime,
    ) -> WriteOutcome:
        """
        Overlay a SafetyAlert node on a news row.

        The NewsItem node synced from the same row is left in place; the
        alert shares its id and carries the row's own approval attribution.
        """
        query = f"""
            MERGE (sa:{self.label('SafetyAlert')} {{alertId: $alertId}})
            ON CREATE SET
                sa.title = $title,
                sa.publishedDate = $publishedDate,
                sa.type = $type,
                sa.severity = $severity,
                sa.drugNameRaw = $drugNameRaw,
                sa.url = $url,
                sa.sourceDomain = $sourceDomain,
                sa.approvalStatus = '{APPROVAL_STATUS_APPROVED}',
                sa.approvedBy = $approvedBy,
                sa.approvedAt = $approvedAt,
                sa.configVersion = $configVersion,
                sa.syncedAt = datetime()
            ON MATCH SET
                sa.title = $title,
                sa.publishedDate = $publishedDate,
                sa.severity = $severity,
                sa.updatedAt = datetime(),
                sa.lastSyncedAt = datetime()
            RETURN sa.alertId AS key
        """
        return await self.neo4j.execute_prefixed_write(
            query,
            {
                'alertId': alert_id,
                'title': title,
                'publishedDate': published_date,
                'type': alert_type,
                'severity': severity,
                'drugNameRaw': drug_name_raw,
                'url': url,
                'sourceDomain': source_domain,
                'approvedBy': approved_by,
                'approvedAt': approved_at,
                'configVersion': self.config_version,
            },
        )

    # =========================================================================
    # Relationships
    # =========================================================================

    async def run_inference_pass(self, query: str, params: dict[str, Any] | None = None) -> int:
        """
        Run one inference statement.

        Returns:
            The ``count`` the statement returns (relationships created or matched)
        """
        outcome = await self.neo4j.execute_prefixed_write(
            query,
            {'configVersion': self.config_version, **(params or {})},
        )
        if not outcome.records:
            return 0
        return outcome.records[0].get('count') or 0

    async def merge_extracted_relationship(
        self,
        template: RelationshipTemplate,
        params: dict[str, Any],
    ) -> int:
        """Merge relationships for one row of an extraction rule; returns the match count."""
        outcome = await self.neo4j.execute_prefixed_write(template.cypher, params)
        if not outcome.records:
            return 0
        return outcome.records[0].get('count') or 0
