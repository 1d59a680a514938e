"""
Record re-classification: news rows promoted to SafetyAlert nodes.

A news row becomes a SafetyAlert when its alert type names a safety action
or its severity is High/Medium. The overlay is additive; the NewsItem node
synced from the same row stays in place.
"""

from datetime import datetime, timezone

from ..clients.postgres_client import PostgresClient
from ..cypher_templates import DEFAULT_APPROVER, to_graph_datetime, to_graph_value
from ..errors import Neo4jConnectionError, Neo4jError, PhaseError, SourceViewError
from ..logging import get_logger
from ..repository import GraphRepository
from .reference_nodes import PhaseOutcome

logger = get_logger(__name__)

SAFETY_ALERT_TYPES = ('Safety Alert', 'Recall', 'Warning Letter')
SAFETY_ALERT_SEVERITIES = ('High', 'Medium')

SAFETY_ALERT_SQL = """
    SELECT *
    FROM vw_approved_news
    WHERE alert_type = ANY(:alert_types)
       OR severity = ANY(:severities)
"""


class SafetyAlertReclassifier:
    """Promotes qualifying news rows to SafetyAlert overlay nodes."""

    def __init__(self, postgres: PostgresClient, repository: GraphRepository):
        self.postgres = postgres
        self.repository = repository

    async def run(self) -> PhaseOutcome:
        """
        Merge one SafetyAlert per qualifying news row.

        Raises:
            PhaseError: If the news view cannot be read
            Neo4jConnectionError: If the graph store becomes unreachable
        """
        try:
            rows = await self.postgres.fetch_query(
                SAFETY_ALERT_SQL,
                {'alert_types': list(SAFETY_ALERT_TYPES), 'severities': list(SAFETY_ALERT_SEVERITIES)},
                context={'phase': 'safety_alerts'},
            )
        except SourceViewError as e:
            raise PhaseError(f'Failed to read news rows: {e.message}', phase='safety_alerts') from e

        outcome = PhaseOutcome()
        for row in rows:
            alert_id = row.get('alert_id')
            if alert_id is None:
                outcome.errors.append(str(PhaseError('News row without alert_id skipped', phase='safety_alerts')))
                continue
            try:
                published_date = to_graph_datetime(row.get('published_date'))
                approved_at = to_graph_datetime(row.get('approved_at')) or datetime.now(timezone.utc)
            except (ValueError, TypeError) as e:
                outcome.errors.append(
                    str(PhaseError(f'SafetyAlert {alert_id} has an unreadable date: {e}', phase='safety_alerts'))
                )
                continue
            try:
                write = await self.repository.merge_safety_alert(
                    alert_id=to_graph_value(alert_id),
                    title=row.get('title') or 'Unknown Alert',
                    published_date=published_date,
                    alert_type=row.get('alert_type') or 'ALERT',
                    severity=row.get('severity') or 'Low',
                    drug_name_raw=row.get('drug_name_raw') or '',
                    url=row.get('url'),
                    source_domain=row.get('sourceDomain') or '',
                    approved_by=row.get('approved_by') or DEFAULT_APPROVER,
                    approved_at=approved_at,
                )
            except Neo4jConnectionError:
                raise
            except Neo4jError as e:
                outcome.errors.append(
                    str(PhaseError(f'SafetyAlert {alert_id} failed: {e.message}', phase='safety_alerts'))
                )
                continue
            outcome.merged += 1
            outcome.nodes_created += write.nodes_created

        logger.info('reclassifier.safety_alerts', merged=outcome.merged, created=outcome.nodes_created)
        return outcome
