"""
Live end-to-end backfill scenarios against a real Neo4j.

The source views are served from fixture rows; only the graph store is
real. Every test writes under its own throwaway staging prefix and deletes
it afterwards, so production labels are never touched.

Run with: pytest tests/test_integration_live.py -v -s
Requires: NEO4J_URI, NEO4J_PASSWORD (NEO4J_USERNAME, NEO4J_DATABASE optional)
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from regintel_graph.clients.neo4j_client import Neo4jClient
from regintel_graph.models.environment import Environment
from regintel_graph.pipeline import BackfillPipeline
from regintel_graph.validation import GraphValidator

pytestmark = pytest.mark.live


@pytest_asyncio.fixture
async def neo4j(neo4j_credentials: dict[str, str], staging_prefix: str):
    client = Neo4jClient(
        **neo4j_credentials,
        label_prefixes={Environment.STAGING: staging_prefix, Environment.PRODUCTION: ''},
    )
    await client.connect()
    try:
        yield client
    finally:
        await client.execute_prefixed_write(
            'MATCH (n) WHERE any(l IN labels(n) WHERE l STARTS WITH $p) DETACH DELETE n',
            {'p': staging_prefix},
        )
        await client.close()


@pytest.fixture
def views(drug_rows, decision_rows) -> dict[str, list[dict[str, Any]]]:
    return {
        'vw_approved_drugs': drug_rows,
        'vw_approved_decisions': decision_rows,
        'vw_approved_trials': [],
        'vw_approved_guidance': [],
        'vw_approved_news': [],
    }


@pytest.fixture
def postgres(views):
    pg = MagicMock()
    pg.fetch_view = AsyncMock(side_effect=lambda view, columns=None: views[view])
    pg.fetch_query = AsyncMock(return_value=[])
    return pg


@pytest.fixture
def pipeline(neo4j, postgres):
    return BackfillPipeline(neo4j, postgres, max_workers=4)


async def _count(neo4j: Neo4jClient, query: str, params: dict[str, Any] | None = None) -> int:
    records = await neo4j.execute_read(query, params, Environment.STAGING)
    return records[0]['count']


class TestLiveBackfill:

    @pytest.mark.asyncio
    async def test_fresh_sync(self, pipeline, neo4j):
        result = await pipeline.run_backfill(Environment.STAGING)
        print(f'\nFresh sync: {result.to_dict()}')

        assert result.success
        assert result.nodes_created == 5
        assert result.relationship_passes['decision_subject_of'] == 1

        stats = await neo4j.get_statistics(Environment.STAGING)
        assert stats['node_count'] == 5
        assert await _count(neo4j, 'MATCH (n:Drug) RETURN count(n) AS count') == 3
        assert await _count(
            neo4j,
            "MATCH (:Drug {drugId: 'drug-001'})-[r:SUBJECT_OF]->(:Decision {decisionId: 'dec-001'}) "
            'RETURN count(r) AS count',
        ) == 1

        approvals = await neo4j.execute_read(
            "MATCH (d:Drug {drugId: 'drug-001'}) RETURN d.approvalStatus AS status, d.approvedBy AS by",
            environment=Environment.STAGING,
        )
        assert approvals == [{'status': 'APPROVED', 'by': 'reviewer-7'}]

    @pytest.mark.asyncio
    async def test_resync_with_changed_name(self, pipeline, neo4j, drug_rows):
        await pipeline.run_backfill(Environment.STAGING)
        relationships_before = (await neo4j.get_statistics(Environment.STAGING))['relationship_count']

        drug_rows[1]['drug_name'] = 'Ozempic (semaglutide)'
        result = await pipeline.run_backfill(Environment.STAGING)

        assert result.success
        assert result.nodes_created == 0
        stats = await neo4j.get_statistics(Environment.STAGING)
        assert stats['node_count'] == 5
        assert stats['relationship_count'] == relationships_before

        rows = await neo4j.execute_read(
            "MATCH (d:Drug {drugId: 'drug-002'}) RETURN d.name AS name, d.updatedAt IS NOT NULL AS updated",
            environment=Environment.STAGING,
        )
        assert rows == [{'name': 'Ozempic (semaglutide)', 'updated': True}]

    @pytest.mark.asyncio
    async def test_dry_run_leaves_graph_untouched(self, pipeline, neo4j):
        result = await pipeline.run_backfill(Environment.STAGING, dry_run=True)

        assert result.total_found == 5
        stats = await neo4j.get_statistics(Environment.STAGING)
        assert stats['node_count'] == 0

    @pytest.mark.asyncio
    async def test_validation_catches_rejected_node(self, pipeline, neo4j):
        await pipeline.run_backfill(Environment.STAGING)
        validator = GraphValidator(neo4j)

        clean = await validator.run_validation(Environment.STAGING)
        assert clean.passed

        await neo4j.execute_write(
            "CREATE (:Drug {drugId: 'drug-rejected', name: 'Rejectumab', approvalStatus: 'REJECTED', "
            "approvedBy: 'reviewer-9', approvedAt: datetime()})",
            environment=Environment.STAGING,
        )
        report = await validator.run_validation(Environment.STAGING)

        assert not report.passed
        assert report.non_approved_count == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, pipeline, neo4j):
        await pipeline.run_backfill(Environment.STAGING)
        first = await neo4j.get_statistics(Environment.STAGING)

        second_run = await pipeline.run_backfill(Environment.STAGING)
        second = await neo4j.get_statistics(Environment.STAGING)

        assert second_run.nodes_created == 0
        assert first == second
