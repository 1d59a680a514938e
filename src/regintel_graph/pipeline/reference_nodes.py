"""
Derived reference nodes: Agency and TherapeuticArea.

Neither has its own curated view. Their values are collected as DISTINCT
values across the approved views, normalized, and merged one node per
normalized value.
"""

from dataclasses import dataclass, field
from typing import Any

from ..clients.postgres_client import PostgresClient
from ..errors import Neo4jConnectionError, Neo4jError, PhaseError, SourceViewError
from ..logging import get_logger
from ..repository import GraphRepository

logger = get_logger(__name__)

# Agencies named by decisions and guidance, plus agencies inferred from the
# source domain of agency-published news.
AGENCY_SQL = """
    SELECT DISTINCT agency, agency_domain
    FROM vw_approved_decisions
    WHERE agency IS NOT NULL
    UNION
    SELECT DISTINCT agency, "sourceDomain" AS agency_domain
    FROM vw_approved_guidance
    WHERE agency IS NOT NULL
    UNION
    SELECT DISTINCT
        CASE
            WHEN "sourceDomain" LIKE '%fda.gov%' THEN 'FDA'
            WHEN "sourceDomain" LIKE '%ema.europa.eu%' THEN 'EMA'
            WHEN "sourceDomain" LIKE '%pmda.go.jp%' THEN 'PMDA'
            ELSE 'OTHER'
        END AS agency,
        "sourceDomain" AS agency_domain
    FROM vw_approved_news
    WHERE "sourceDomain" IS NOT NULL
      AND ("sourceDomain" LIKE '%fda.gov%'
           OR "sourceDomain" LIKE '%ema.europa.eu%'
           OR "sourceDomain" LIKE '%pmda.go.jp%')
"""

THERAPEUTIC_AREA_SQL = """
    SELECT DISTINCT therapeutic_area
    FROM vw_approved_drugs
    WHERE therapeutic_area IS NOT NULL
      AND therapeutic_area != 'Unknown'
"""

UNKNOWN_AGENCY_CODE = 'UNKNOWN'


@dataclass
class PhaseOutcome:
    """Counts and recorded failures of one derived-node phase."""

    merged: int = 0
    nodes_created: int = 0
    errors: list[str] = field(default_factory=list)


def normalize_agency(row: dict[str, Any]) -> tuple[str, str, str]:
    """(code, name, domain) for one agency row."""
    agency = (row.get('agency') or '').strip()
    code = agency.upper() or UNKNOWN_AGENCY_CODE
    name = agency or 'Unknown Agency'
    domain = (row.get('agency_domain') or '').strip()
    return code, name, domain


def therapeutic_area_category(name: str) -> str:
    return 'Oncology' if 'Oncology' in name else 'Other'


class ReferenceNodeBuilder:
    """Creates the cross-cutting reference nodes of one backfill run."""

    def __init__(self, postgres: PostgresClient, repository: GraphRepository):
        self.postgres = postgres
        self.repository = repository

    async def create_agencies(self) -> PhaseOutcome:
        """
        Merge one Agency node per distinct normalized agency code.

        Raises:
            PhaseError: If the agency union cannot be read
            Neo4jConnectionError: If the graph store becomes unreachable
        """
        rows = await self._fetch(AGENCY_SQL, 'agencies')
        outcome = PhaseOutcome()

        for row in rows:
            code, name, domain = normalize_agency(row)
            try:
                write = await self.repository.merge_agency(code, name, domain)
            except Neo4jConnectionError:
                raise
            except Neo4jError as e:
                outcome.errors.append(str(PhaseError(f'Agency {code} failed: {e.message}', phase='agencies')))
                continue
            outcome.merged += 1
            outcome.nodes_created += write.nodes_created

        logger.info('reference_nodes.agencies', merged=outcome.merged, created=outcome.nodes_created)
        return outcome

    async def create_therapeutic_areas(self) -> PhaseOutcome:
        """Merge one TherapeuticArea node per distinct named area."""
        rows = await self._fetch(THERAPEUTIC_AREA_SQL, 'therapeutic_areas')
        outcome = PhaseOutcome()

        for row in rows:
            name = (row.get('therapeutic_area') or '').strip()
            if not name:
                continue
            try:
                write = await self.repository.merge_therapeutic_area(name, therapeutic_area_category(name))
            except Neo4jConnectionError:
                raise
            except Neo4jError as e:
                outcome.errors.append(
                    str(PhaseError(f'TherapeuticArea {name} failed: {e.message}', phase='therapeutic_areas'))
                )
                continue
            outcome.merged += 1
            outcome.nodes_created += write.nodes_created

        logger.info('reference_nodes.therapeutic_areas', merged=outcome.merged, created=outcome.nodes_created)
        return outcome

    async def _fetch(self, sql: str, phase: str) -> list[dict[str, Any]]:
        try:
            return await self.postgres.fetch_query(sql, context={'phase': phase})
        except SourceViewError as e:
            raise PhaseError(f'Failed to read source rows for {phase}: {e.message}', phase=phase) from e
