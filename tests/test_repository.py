"""
Tests for the graph repository's merge statements.

Run with: pytest tests/test_repository.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from regintel_graph.clients.neo4j_client import WriteOutcome
from regintel_graph.models.templates import NodeTemplate, RelationshipTemplate
from regintel_graph.repository import GraphRepository


@pytest.fixture
def neo4j():
    client = MagicMock()
    client.execute_prefixed_write = AsyncMock(return_value=WriteOutcome(nodes_created=1))
    return client


@pytest.fixture
def repository(neo4j):
    return GraphRepository(neo4j, prefix='_stg_', config_version='v7')


def _sent(neo4j):
    return neo4j.execute_prefixed_write.await_args.args


class TestLabels:

    def test_label_prefixed(self, repository):
        assert repository.label('Agency') == '_stg_Agency'

    def test_production_label_bare(self, neo4j):
        assert GraphRepository(neo4j, prefix='', config_version='v1').label('Agency') == 'Agency'


class TestReferenceMerges:

    @pytest.mark.asyncio
    async def test_merge_agency(self, repository, neo4j):
        outcome = await repository.merge_agency('EMA', 'ema', 'ema.europa.eu')

        assert outcome.nodes_created == 1
        query, params = _sent(neo4j)
        assert 'MERGE (a:_stg_Agency {code: $code})' in query
        assert "a.approvalStatus = 'APPROVED'" in query
        assert params == {
            'code': 'EMA',
            'name': 'ema',
            'domain': 'ema.europa.eu',
            'approvedBy': 'system',
            'configVersion': 'v7',
        }

    @pytest.mark.asyncio
    async def test_agency_domain_only_filled_when_empty(self, repository, neo4j):
        await repository.merge_agency('FDA', 'fda', 'fda.gov')

        query, _ = _sent(neo4j)
        assert "CASE WHEN coalesce(a.domain, '') = '' THEN $domain ELSE a.domain END" in query

    @pytest.mark.asyncio
    async def test_merge_therapeutic_area(self, repository, neo4j):
        await repository.merge_therapeutic_area('Oncology', 'Oncology')

        query, params = _sent(neo4j)
        assert 'MERGE (ta:_stg_TherapeuticArea {name: $name})' in query
        assert params['category'] == 'Oncology'
        assert params['configVersion'] == 'v7'

    @pytest.mark.asyncio
    async def test_safety_alert_keeps_row_approval(self, repository, neo4j):
        approved_at = datetime(2026, 3, 2, tzinfo=timezone.utc)

        await repository.merge_safety_alert(
            alert_id='news-9',
            title='Boxed warning added',
            published_date=None,
            alert_type='BOXED_WARNING',
            severity='HIGH',
            drug_name_raw='Keytruda',
            url=None,
            source_domain='fda.gov',
            approved_by='reviewer-3',
            approved_at=approved_at,
        )

        query, params = _sent(neo4j)
        assert 'MERGE (sa:_stg_SafetyAlert {alertId: $alertId})' in query
        assert 'sa.approvedAt = $approvedAt' in query
        assert params['approvedBy'] == 'reviewer-3'
        assert params['approvedAt'] == approved_at
        assert params['publishedDate'] is None


class TestTemplateWrites:

    @pytest.mark.asyncio
    async def test_merge_node_sends_template_verbatim(self, repository, neo4j):
        template = NodeTemplate(
            label='Drug',
            graph_label='_stg_Drug',
            cypher='MERGE (n:_stg_Drug {drugId: $drugId}) RETURN n.drugId AS key',
            parameters=['drugId'],
        )

        await repository.merge_node(template, {'drugId': 'drug-001'})

        assert _sent(neo4j) == (template.cypher, {'drugId': 'drug-001'})

    @pytest.mark.asyncio
    async def test_inference_pass_returns_count(self, repository, neo4j):
        neo4j.execute_prefixed_write.return_value = WriteOutcome(records=[{'count': 4}])

        count = await repository.run_inference_pass('MATCH ... RETURN count(r) AS count', {'threshold': 2})

        assert count == 4
        _, params = _sent(neo4j)
        assert params == {'configVersion': 'v7', 'threshold': 2}

    @pytest.mark.asyncio
    async def test_inference_pass_without_records(self, repository, neo4j):
        neo4j.execute_prefixed_write.return_value = WriteOutcome()

        assert await repository.run_inference_pass('MATCH ...') == 0

    @pytest.mark.asyncio
    async def test_extracted_relationship_count(self, repository, neo4j):
        neo4j.execute_prefixed_write.return_value = WriteOutcome(records=[{'count': None}])
        template = RelationshipTemplate(
            type='APPROVED_BY',
            from_label='Drug',
            to_label='Agency',
            from_key_property='drugId',
            to_key_property='code',
            cypher='MATCH ... RETURN count(r) AS count',
        )

        assert await repository.merge_extracted_relationship(template, {'fromKey': 'drug-001'}) == 0
