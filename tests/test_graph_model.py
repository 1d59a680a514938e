"""
Tests for the declarative graph model.

Run with: pytest tests/test_graph_model.py -v
"""

import pytest
from pydantic import ValidationError

from regintel_graph.errors import ModelValidationError
from regintel_graph.models.graph_model import (
    GraphConfig,
    KeyStrategy,
    MappingRule,
    MatchStrategy,
    NodeSpec,
    RelationshipSpec,
    Transform,
    load_graph_config,
)


@pytest.fixture
def wire_config() -> dict:
    """A small configuration as it arrives over the wire (camelCase)."""
    return {
        'configVersion': 'v7',
        'nodes': [
            {
                'label': 'Drug',
                'keyProperty': 'drugId',
                'properties': [
                    {'name': 'drugId', 'required': True},
                    {'name': 'name'},
                    {'name': 'approvedDate', 'type': 'datetime'},
                ],
            },
            {'label': 'Agency', 'keyProperty': 'code', 'derived': True},
        ],
        'relationships': [
            {'type': 'APPROVED_BY', 'from': 'Drug', 'to': 'Agency'},
        ],
        'mappingRules': [
            {
                'postgresView': 'vw_approved_drugs',
                'nodeLabel': 'Drug',
                'keyStrategy': 'column',
                'keyFields': ['drug_id'],
                'propertyMappings': [
                    {'neoProperty': 'drugId', 'pgColumn': 'drug_id'},
                    {'neoProperty': 'name', 'pgColumn': 'drug_name'},
                    {'neoProperty': 'approvedDate', 'pgColumn': 'approved_date', 'transform': 'to_datetime'},
                ],
                'relationships': [
                    {'type': 'APPROVED_BY', 'toLabel': 'Agency', 'matchField': 'agency'},
                ],
            },
        ],
    }


class TestLoading:
    """Parsing serialized configurations."""

    def test_camel_case_wire_format(self, wire_config):
        config = load_graph_config(wire_config)

        assert config.config_version == 'v7'
        drug = config.get_node('Drug')
        assert drug.key_property == 'drugId'
        assert drug.get_property('approvedDate').type == 'datetime'
        assert config.get_node('Agency').derived is True

        rule = config.get_rule('Drug')
        assert rule.key_strategy is KeyStrategy.COLUMN
        assert rule.property_mappings[2].transform is Transform.TO_DATETIME
        assert rule.relationships[0].match_strategy is MatchStrategy.COLUMN

    def test_relationship_from_to_aliases(self, wire_config):
        config = load_graph_config(wire_config)
        rel = config.relationships[0]
        assert (rel.from_label, rel.to_label) == ('Drug', 'Agency')

    def test_snake_case_names_accepted(self):
        rel = RelationshipSpec(type='TREATS', from_label='Drug', to_label='TherapeuticArea')
        assert rel.model_dump(by_alias=True)['from'] == 'Drug'

    def test_unknown_reference_rejected(self, wire_config):
        wire_config['relationships'].append({'type': 'TREATS', 'from': 'Drug', 'to': 'TherapeuticArea'})

        with pytest.raises(ModelValidationError) as exc_info:
            load_graph_config(wire_config)

        problems = exc_info.value.context['problems']
        assert problems == ['Relationship TREATS references unknown node TherapeuticArea']

    def test_duplicate_labels_reported(self, wire_config):
        wire_config['nodes'].append({'label': 'Drug', 'keyProperty': 'drugId'})
        config = GraphConfig.model_validate(wire_config)
        assert 'Duplicate node label: Drug' in config.reference_problems()

    def test_unknown_extraction_target_reported(self, wire_config):
        wire_config['mappingRules'][0]['relationships'].append(
            {'type': 'TREATS', 'toLabel': 'TherapeuticArea', 'matchField': 'area'}
        )
        config = GraphConfig.model_validate(wire_config)
        assert config.reference_problems() == [
            'Extraction rule TREATS on Drug references unknown node TherapeuticArea'
        ]

    def test_specs_are_immutable(self, wire_config):
        config = load_graph_config(wire_config)
        with pytest.raises(ValidationError):
            config.get_node('Drug').key_property = 'id'


class TestKeyProperties:
    """Merge key resolution from a mapping rule."""

    def test_column_key_uses_mapped_property(self):
        node = NodeSpec(label='Drug', key_property='drugId')
        rule = MappingRule(
            postgres_view='vw_approved_drugs',
            node_label='Drug',
            key_fields=['drug_id'],
            property_mappings=[{'neo_property': 'drugId', 'pg_column': 'drug_id'}],
        )
        assert rule.key_property_names(node) == ['drugId']

    def test_unmapped_key_field_keeps_column_name(self):
        node = NodeSpec(label='Doc', key_property='ref')
        rule = MappingRule(
            postgres_view='vw_docs',
            node_label='Doc',
            key_strategy=KeyStrategy.COMPOSITE,
            key_fields=['agency', 'ref'],
        )
        assert rule.key_property_names(node) == ['agency', 'ref']

    def test_hash_key_uses_node_key_property(self):
        node = NodeSpec(label='Event', key_property='eventKey')
        rule = MappingRule(
            postgres_view='vw_events',
            node_label='Event',
            key_strategy=KeyStrategy.HASH,
            key_fields=['source', 'ext_id'],
        )
        assert rule.key_property_names(node) == ['eventKey']


class TestTemplateCache:
    """GraphConfig.templates_for reuses generated templates."""

    def test_same_environment_and_prefix_reused(self, wire_config):
        config = load_graph_config(wire_config)

        first = config.templates_for('STAGING', '_stg_')
        second = config.templates_for('STAGING', '_stg_')
        other = config.templates_for('STAGING', '_tmp_')

        assert first is second
        assert other is not first
        assert first.config_version == 'v7'
        assert first.nodes['Drug'].graph_label == '_stg_Drug'
        assert other.nodes['Drug'].graph_label == '_tmp_Drug'

    def test_unmapped_key_column_must_match_key_property(self, wire_config):
        wire_config['mappingRules'][0]['propertyMappings'][0] = {'neoProperty': 'name', 'pgColumn': 'drug_name'}

        with pytest.raises(ModelValidationError) as exc_info:
            load_graph_config(wire_config)

        assert exc_info.value.context['problems'] == [
            "Mapping rule for vw_approved_drugs keys Drug on ['drug_id'], not its key property drugId"
        ]

    def test_composite_key_containing_key_property_accepted(self):
        node = NodeSpec(label='Doc', key_property='ref')
        rule = MappingRule(
            postgres_view='vw_docs',
            node_label='Doc',
            key_strategy=KeyStrategy.COMPOSITE,
            key_fields=['agency', 'ref'],
        )
        assert rule.keys_on(node)
        assert not rule.keys_on(NodeSpec(label='Doc', key_property='docId'))
