"""
Data models for the RegIntel graph sync engine.
"""

from .environment import (
    Environment,
    add_label_prefix,
    label_prefix,
    prefixed_label,
    scope_predicate,
    strip_label_prefix,
)
from .graph_model import (
    GraphConfig,
    KeyStrategy,
    MappingRule,
    MatchStrategy,
    NodeSpec,
    PropertyMapping,
    PropertySpec,
    RelationshipExtractionRule,
    RelationshipSpec,
    Transform,
    load_graph_config,
)
from .templates import CypherTemplates, NodeTemplate, RelationshipTemplate

__all__ = [
    'Environment',
    'add_label_prefix',
    'label_prefix',
    'prefixed_label',
    'scope_predicate',
    'strip_label_prefix',
    'GraphConfig',
    'KeyStrategy',
    'MappingRule',
    'MatchStrategy',
    'NodeSpec',
    'PropertyMapping',
    'PropertySpec',
    'RelationshipExtractionRule',
    'RelationshipSpec',
    'Transform',
    'load_graph_config',
    'CypherTemplates',
    'NodeTemplate',
    'RelationshipTemplate',
]
