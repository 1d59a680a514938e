"""
Tests for derived reference nodes and SafetyAlert re-classification.

Run with: pytest tests/test_reference_nodes.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from regintel_graph.clients.neo4j_client import WriteOutcome
from regintel_graph.errors import (
    Neo4jConnectionError,
    Neo4jQueryError,
    PhaseError,
    SourceViewError,
)
from regintel_graph.pipeline.reclassifier import (
    SAFETY_ALERT_SEVERITIES,
    SAFETY_ALERT_TYPES,
    SafetyAlertReclassifier,
)
from regintel_graph.pipeline.reference_nodes import (
    AGENCY_SQL,
    THERAPEUTIC_AREA_SQL,
    ReferenceNodeBuilder,
    normalize_agency,
    therapeutic_area_category,
)


@pytest.fixture
def postgres():
    pg = MagicMock()
    pg.fetch_query = AsyncMock(return_value=[])
    return pg


@pytest.fixture
def repository():
    repo = MagicMock()
    created = WriteOutcome(nodes_created=1)
    repo.merge_agency = AsyncMock(return_value=created)
    repo.merge_therapeutic_area = AsyncMock(return_value=created)
    repo.merge_safety_alert = AsyncMock(return_value=created)
    return repo


# =============================================================================
# Normalisation
# =============================================================================


class TestNormalisation:

    def test_agency_code_upper_cased(self):
        assert normalize_agency({'agency': ' ema ', 'agency_domain': 'ema.europa.eu'}) == (
            'EMA',
            'ema',
            'ema.europa.eu',
        )

    def test_missing_agency(self):
        assert normalize_agency({'agency': None, 'agency_domain': None}) == ('UNKNOWN', 'Unknown Agency', '')

    def test_therapeutic_area_category(self):
        assert therapeutic_area_category('Oncology') == 'Oncology'
        assert therapeutic_area_category('Haematology-Oncology') == 'Oncology'
        assert therapeutic_area_category('Neurology') == 'Other'


# =============================================================================
# Agencies & therapeutic areas
# =============================================================================


class TestReferenceNodes:

    @pytest.mark.asyncio
    async def test_agencies_merged(self, postgres, repository):
        postgres.fetch_query.return_value = [
            {'agency': 'EMA', 'agency_domain': 'ema.europa.eu'},
            {'agency': 'fda', 'agency_domain': 'fda.gov'},
        ]

        outcome = await ReferenceNodeBuilder(postgres, repository).create_agencies()

        assert postgres.fetch_query.await_args.args[0] == AGENCY_SQL
        assert [c.args for c in repository.merge_agency.await_args_list] == [
            ('EMA', 'EMA', 'ema.europa.eu'),
            ('FDA', 'fda', 'fda.gov'),
        ]
        assert (outcome.merged, outcome.nodes_created, outcome.errors) == (2, 2, [])

    @pytest.mark.asyncio
    async def test_therapeutic_areas_merged(self, postgres, repository):
        postgres.fetch_query.return_value = [
            {'therapeutic_area': 'Oncology'},
            {'therapeutic_area': '  '},
            {'therapeutic_area': 'Neurology'},
        ]

        outcome = await ReferenceNodeBuilder(postgres, repository).create_therapeutic_areas()

        assert postgres.fetch_query.await_args.args[0] == THERAPEUTIC_AREA_SQL
        assert [c.args for c in repository.merge_therapeutic_area.await_args_list] == [
            ('Oncology', 'Oncology'),
            ('Neurology', 'Other'),
        ]
        assert outcome.merged == 2

    @pytest.mark.asyncio
    async def test_rejected_merge_recorded(self, postgres, repository):
        postgres.fetch_query.return_value = [{'agency': 'EMA'}, {'agency': 'FDA'}]
        repository.merge_agency.side_effect = [Neo4jQueryError('bad'), WriteOutcome(nodes_created=0)]

        outcome = await ReferenceNodeBuilder(postgres, repository).create_agencies()

        assert outcome.merged == 1
        assert outcome.nodes_created == 0
        assert len(outcome.errors) == 1
        assert 'Agency EMA failed' in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, postgres, repository):
        postgres.fetch_query.return_value = [{'therapeutic_area': 'Oncology'}]
        repository.merge_therapeutic_area.side_effect = Neo4jConnectionError('gone')

        with pytest.raises(Neo4jConnectionError):
            await ReferenceNodeBuilder(postgres, repository).create_therapeutic_areas()

    @pytest.mark.asyncio
    async def test_unreadable_source_is_phase_error(self, postgres, repository):
        postgres.fetch_query.side_effect = SourceViewError('timeout')

        with pytest.raises(PhaseError) as exc_info:
            await ReferenceNodeBuilder(postgres, repository).create_agencies()
        assert exc_info.value.phase == 'agencies'


# =============================================================================
# SafetyAlert re-classification
# =============================================================================


class TestSafetyAlerts:

    @pytest.mark.asyncio
    async def test_qualifying_rows_promoted(self, postgres, repository, approved_at):
        postgres.fetch_query.return_value = [
            {
                'alert_id': 'news-010',
                'title': 'Class I recall of Examplumab',
                'published_date': datetime(2026, 2, 1, tzinfo=timezone.utc),
                'alert_type': 'Recall',
                'severity': 'High',
                'drug_name_raw': 'Examplumab',
                'url': 'https://www.fda.gov/safety/recalls',
                'sourceDomain': 'fda.gov',
                'approved_by': 'reviewer-3',
                'approved_at': approved_at,
            },
        ]

        outcome = await SafetyAlertReclassifier(postgres, repository).run()

        params = postgres.fetch_query.await_args.args[1]
        assert params == {
            'alert_types': list(SAFETY_ALERT_TYPES),
            'severities': list(SAFETY_ALERT_SEVERITIES),
        }
        kwargs = repository.merge_safety_alert.await_args.kwargs
        assert kwargs['alert_id'] == 'news-010'
        assert kwargs['approved_by'] == 'reviewer-3'
        assert kwargs['approved_at'] == approved_at
        assert kwargs['source_domain'] == 'fda.gov'
        assert outcome.merged == 1

    @pytest.mark.asyncio
    async def test_defaults_for_sparse_rows(self, postgres, repository):
        postgres.fetch_query.return_value = [{'alert_id': 'news-011', 'severity': None}]

        await SafetyAlertReclassifier(postgres, repository).run()

        kwargs = repository.merge_safety_alert.await_args.kwargs
        assert kwargs['title'] == 'Unknown Alert'
        assert kwargs['alert_type'] == 'ALERT'
        assert kwargs['severity'] == 'Low'
        assert kwargs['approved_by'] == 'system'
        assert isinstance(kwargs['approved_at'], datetime)

    @pytest.mark.asyncio
    async def test_string_dates_stored_as_datetimes(self, postgres, repository):
        postgres.fetch_query.return_value = [
            {
                'alert_id': 'news-012',
                'published_date': '2026-02-01',
                'approved_at': '2026-03-02T09:30:00Z',
            },
        ]

        await SafetyAlertReclassifier(postgres, repository).run()

        kwargs = repository.merge_safety_alert.await_args.kwargs
        assert kwargs['published_date'] == datetime(2026, 2, 1)
        assert kwargs['approved_at'] == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_unreadable_date_recorded(self, postgres, repository):
        postgres.fetch_query.return_value = [
            {'alert_id': 'news-013', 'published_date': 'early February'},
            {'alert_id': 'news-014'},
        ]

        outcome = await SafetyAlertReclassifier(postgres, repository).run()

        assert outcome.merged == 1
        assert len(outcome.errors) == 1
        assert 'news-013' in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_row_without_id_recorded(self, postgres, repository):
        postgres.fetch_query.return_value = [{'alert_id': None, 'title': 'x'}]

        outcome = await SafetyAlertReclassifier(postgres, repository).run()

        repository.merge_safety_alert.assert_not_awaited()
        assert outcome.merged == 0
        assert len(outcome.errors) == 1

    @pytest.mark.asyncio
    async def test_unreadable_news_is_phase_error(self, postgres, repository):
        postgres.fetch_query.side_effect = SourceViewError('relation "vw_approved_news" does not exist')

        with pytest.raises(PhaseError) as exc_info:
            await SafetyAlertReclassifier(postgres, repository).run()
        assert exc_info.value.phase == 'safety_alerts'
