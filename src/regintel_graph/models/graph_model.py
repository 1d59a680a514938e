"""
Declarative graph model consumed by the template engine.

A GraphConfig bundles:
- NodeSpec / RelationshipSpec: the target schema
- MappingRule: how one curated Postgres view becomes nodes of one label

The configuration is produced upstream (JSON, camelCase keys) and is
immutable: any change mints a new ``config_version``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel

from ..errors import ModelValidationError
from .environment import Environment


class _SpecModel(BaseModel):
    """Frozen base accepting both camelCase (wire) and snake_case names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# Schema
# =============================================================================


class PropertySpec(_SpecModel):
    """A single property declared on a node or relationship."""

    name: str
    type: str = Field(default='string', description='string, integer, float, boolean, date, datetime')
    required: bool = False
    description: str = ''


class NodeSpec(_SpecModel):
    """A node label in the target graph."""

    label: str
    description: str = ''
    properties: list[PropertySpec] = Field(default_factory=list)
    key_property: str
    derived: bool = Field(
        default=False,
        description='Created by the pipeline itself (reference or overlay node); has no mapping rule',
    )

    @property
    def property_names(self) -> list[str]:
        return [p.name for p in self.properties]

    def get_property(self, name: str) -> PropertySpec | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None


class RelationshipSpec(_SpecModel):
    """A relationship type between two node labels."""

    type: str
    from_label: str = Field(..., alias='from')
    to_label: str = Field(..., alias='to')
    description: str = ''
    properties: list[PropertySpec] = Field(default_factory=list)


# =============================================================================
# Mapping rules
# =============================================================================


class KeyStrategy(str, Enum):
    """How the merge key of a node is built from its source row."""

    COLUMN = 'column'
    COMPOSITE = 'composite'
    HASH = 'hash'


class Transform(str, Enum):
    """Value transform applied while mapping a column to a property."""

    TO_DATE = 'to_date'
    TO_DATETIME = 'to_datetime'
    TO_UPPER = 'to_upper'
    TO_LOWER = 'to_lower'
    ENUM_MAP = 'enum_map'


class MatchStrategy(str, Enum):
    """How a RelationshipExtractionRule locates its target node."""

    COLUMN = 'column'
    LOOKUP = 'lookup'


class PropertyMapping(_SpecModel):
    """Source column → target property."""

    neo_property: str
    pg_column: str
    transform: Transform | None = None
    enum_map: dict[str, str] | None = None
    update_on_match: bool | None = Field(
        default=None,
        description='Refresh on re-sync; None derives it from the property name and type',
    )


class RelationshipExtractionRule(_SpecModel):
    """Relationship emitted for every row of a mapping rule."""

    type: str
    to_label: str
    match_strategy: MatchStrategy = MatchStrategy.COLUMN
    match_field: str
    target_property: str | None = Field(
        default=None,
        description='Target property compared by lookup (defaults to the key property)',
    )


class MappingRule(_SpecModel):
    """How rows of one curated view become nodes of one label."""

    postgres_view: str
    node_label: str
    key_strategy: KeyStrategy = KeyStrategy.COLUMN
    key_fields: list[str]
    property_mappings: list[PropertyMapping] = Field(default_factory=list)
    relationships: list[RelationshipExtractionRule] = Field(default_factory=list)

    def mapping_for_column(self, column: str) -> PropertyMapping | None:
        for mapping in self.property_mappings:
            if mapping.pg_column == column:
                return mapping
        return None

    def key_property_names(self, node: NodeSpec) -> list[str]:
        """Target property names that make up the merge key."""
        if self.key_strategy is KeyStrategy.HASH:
            return [node.key_property]
        names = []
        for field in self.key_fields:
            mapping = self.mapping_for_column(field)
            names.append(mapping.neo_property if mapping else field)
        return names

    def keys_on(self, node: NodeSpec) -> bool:
        """True if the merge key includes the node's declared key property."""
        return node.key_property in self.key_property_names(node)


# =============================================================================
# Bundle
# =============================================================================


class GraphConfig(_SpecModel):
    """Versioned graph model plus its mapping rules."""

    config_version: str
    nodes: list[NodeSpec]
    relationships: list[RelationshipSpec] = Field(default_factory=list)
    mapping_rules: list[MappingRule] = Field(default_factory=list)

    _template_cache: dict[tuple[str, str], Any] = PrivateAttr(default_factory=dict)

    def get_node(self, label: str) -> NodeSpec | None:
        for node in self.nodes:
            if node.label == label:
                return node
        return None

    def get_rule(self, label: str) -> MappingRule | None:
        for rule in self.mapping_rules:
            if rule.node_label == label:
                return rule
        return None

    def reference_problems(self) -> list[str]:
        """
        Check cross references between specs.

        Returns:
            Human-readable problems; empty when the config is consistent
        """
        problems: list[str] = []
        labels = [n.label for n in self.nodes]

        seen: set[str] = set()
        for label in labels:
            if label in seen:
                problems.append(f'Duplicate node label: {label}')
            seen.add(label)

        for rel in self.relationships:
            if rel.from_label not in seen:
                problems.append(f'Relationship {rel.type} references unknown node {rel.from_label}')
            if rel.to_label not in seen:
                problems.append(f'Relationship {rel.type} references unknown node {rel.to_label}')

        for rule in self.mapping_rules:
            if rule.node_label not in seen:
                problems.append(f'Mapping rule for {rule.postgres_view} references unknown node {rule.node_label}')
            else:
                node = self.get_node(rule.node_label)
                if not rule.keys_on(node):
                    problems.append(
                        f'Mapping rule for {rule.postgres_view} keys {rule.node_label} on '
                        f'{rule.key_property_names(node)}, not its key property {node.key_property}'
                    )
            for extraction in rule.relationships:
                if extraction.to_label not in seen:
                    problems.append(
                        f'Extraction rule {extraction.type} on {rule.node_label} '
                        f'references unknown node {extraction.to_label}'
                    )

        return problems

    def templates_for(self, environment: str, prefix: str) -> Any:
        """Generate (or reuse) the CypherTemplates for one environment."""
        from ..cypher_templates import generate_templates

        cache_key = (Environment(environment).value, prefix)
        cached = self._template_cache.get(cache_key)
        if cached is None:
            cached = generate_templates(
                self.nodes,
                self.relationships,
                self.mapping_rules,
                environment,
                config_version=self.config_version,
                prefix=prefix,
            )
            self._template_cache[cache_key] = cached
        return cached


def load_graph_config(data: dict[str, Any]) -> GraphConfig:
    """
    Parse and validate a serialized graph configuration.

    Args:
        data: JSON-compatible dict (camelCase or snake_case keys)

    Returns:
        Validated GraphConfig

    Raises:
        ModelValidationError: If specs reference labels that do not exist
    """
    config = GraphConfig.model_validate(data)
    problems = config.reference_problems()
    if problems:
        raise ModelValidationError(
            'Graph configuration failed validation',
            context={'config_version': config.config_version, 'problems': problems},
        )
    return config
