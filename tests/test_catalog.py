"""
Tests for the built-in regulatory catalog and row preparation.

Run with: pytest tests/test_catalog.py -v
"""

from regintel_graph.catalog import (
    ENTITY_ORDER,
    MAPPING_RULES,
    NODES,
    RELATIONSHIPS,
    ROW_PREPARERS,
    UNKNOWN_LOCATION,
    extract_location,
    format_trial_name,
    prepare_trial_row,
    regulatory_graph_config,
)
from regintel_graph.models.graph_model import GraphConfig


class TestCatalog:
    """The shipped graph model is internally consistent."""

    def test_references_resolve(self):
        config = GraphConfig(config_version='test', nodes=NODES, relationships=RELATIONSHIPS, mapping_rules=MAPPING_RULES)
        assert config.reference_problems() == []

    def test_every_primary_entity_has_a_rule(self):
        config = regulatory_graph_config('test')
        for label in ENTITY_ORDER:
            assert config.get_rule(label) is not None
            assert not config.get_node(label).derived

    def test_derived_nodes_have_no_rule(self):
        config = regulatory_graph_config('test')
        for node in config.nodes:
            if node.derived:
                assert config.get_rule(node.label) is None

    def test_config_is_cached_per_version(self):
        assert regulatory_graph_config('test') is regulatory_graph_config('test')
        assert regulatory_graph_config('other').config_version == 'other'

    def test_views(self):
        views = {rule.node_label: rule.postgres_view for rule in MAPPING_RULES}
        assert views == {
            'Drug': 'vw_approved_drugs',
            'Decision': 'vw_approved_decisions',
            'Trial': 'vw_approved_trials',
            'Guidance': 'vw_approved_guidance',
            'NewsItem': 'vw_approved_news',
        }


class TestLocationExtraction:
    """Meeting locations pulled out of trial titles."""

    def test_after_preposition(self):
        assert extract_location('Phase 3 study of Keytruda in Boston') == 'Boston'

    def test_multi_word_location(self):
        assert extract_location('Meeting held at Silver Spring, Maryland') == 'Silver Spring, Maryland'

    def test_after_dash(self):
        assert extract_location('CHMP meeting - Amsterdam') == 'Amsterdam'

    def test_no_location(self):
        assert extract_location('no location here') is None


class TestTrialName:
    """Display names for Trial nodes."""

    def test_location_already_in_title(self):
        assert format_trial_name('CHMP meeting - Amsterdam', 'Amsterdam', 'Unknown') == 'CHMP meeting - Amsterdam'

    def test_phase_prefix_and_location_suffix(self):
        assert format_trial_name('Advisory committee meeting', 'Tokyo', 'Phase 2') == (
            'Phase 2: Advisory committee meeting (Tokyo)'
        )

    def test_phase_not_repeated(self):
        title = 'Phase 3 study of Keytruda in Boston'
        assert format_trial_name(title, 'Boston', 'Phase 3') == title

    def test_long_title_truncated(self):
        title = 'A' * 70
        name = format_trial_name(title, None, None)
        assert len(name) == 60
        assert name.endswith('...')

    def test_missing_title(self):
        assert format_trial_name(None, 'Boston', 'Phase 1') == 'Unknown Trial'


class TestRowPreparation:
    """Defaults and derived columns applied before templating."""

    def test_trial_row(self):
        row = prepare_trial_row({'trial_id': 't-1', 'title': 'CHMP meeting - Amsterdam', 'phase': None})

        assert row['location'] == 'Amsterdam'
        assert row['display_name'] == 'CHMP meeting - Amsterdam'
        assert row['phase'] == 'Unknown'
        assert row['trial_status'] == 'Unknown'

    def test_trial_without_location_or_title(self):
        row = prepare_trial_row({'trial_id': 't-2', 'title': None})

        assert row['location'] == UNKNOWN_LOCATION
        assert row['title'] == 'Unknown Trial'
        assert row['display_name'] == 'Unknown Trial'

    def test_defaults_fill_empty_values_only(self):
        row = ROW_PREPARERS['NewsItem']({'alert_id': 'n-1', 'title': '', 'severity': 'HIGH'})

        assert row['title'] == 'Unknown News'
        assert row['severity'] == 'HIGH'
        assert row['agency'] == 'OTHER'

    def test_source_row_not_mutated(self):
        source = {'drug_id': 'd-1', 'drug_name': None}
        prepared = ROW_PREPARERS['Drug'](source)

        assert prepared['drug_name'] == 'Unknown'
        assert source['drug_name'] is None
