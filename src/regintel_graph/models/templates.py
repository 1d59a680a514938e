"""
Compiled, parameterized Cypher templates.

Templates are derived data: regenerated whenever the GraphConfig changes and
identified by the config_version that produced them.
"""

from typing import Any

from pydantic import BaseModel, Field


class NodeTemplate(BaseModel):
    """MERGE statement for one node label."""

    label: str
    graph_label: str = Field(..., description='Label as written to the store (environment prefix applied)')
    cypher: str
    parameters: list[str] = Field(default_factory=list, description='Parameter names the statement expects')
    key_properties: list[str] = Field(default_factory=list)
    create_properties: list[str] = Field(default_factory=list)
    match_properties: list[str] = Field(default_factory=list)


class RelationshipTemplate(BaseModel):
    """MATCH/MATCH/MERGE statement for one relationship type."""

    type: str
    from_label: str
    to_label: str
    from_key_property: str
    to_key_property: str
    cypher: str
    match_strategy: str = 'column'
    parameters: list[str] = Field(default_factory=list)


class CypherTemplates(BaseModel):
    """All templates generated for one (config_version, environment)."""

    environment: str
    config_version: str
    nodes: dict[str, NodeTemplate] = Field(default_factory=dict)
    relationships: dict[str, RelationshipTemplate] = Field(default_factory=dict)
    extractions: dict[str, RelationshipTemplate] = Field(
        default_factory=dict,
        description='Per-row relationship templates from mapping-rule extraction rules, keyed Label.TYPE->Target',
    )
    warnings: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump()
