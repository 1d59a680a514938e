"""
Cypher template generation engine.

Compiles a declarative graph model into parameterized MERGE statements.
Pure functions only: nothing here talks to a database.

Every node template stamps the approval contract on create:
- approvalStatus = 'APPROVED'
- approvedBy / approvedAt (attribution from the curated view)
- configVersion (which model/mapping version produced the node)
- syncedAt

On match only updatedAt / lastSyncedAt and the properties that legitimately
change over time are refreshed; keys and approval authorship never are.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from .errors import MalformedRowError, SchemaMismatchError, TemplateError
from .logging import get_logger
from .models.environment import Environment, label_prefix, prefixed_label
from .models.graph_model import (
    KeyStrategy,
    MappingRule,
    MatchStrategy,
    NodeSpec,
    PropertyMapping,
    RelationshipExtractionRule,
    RelationshipSpec,
    Transform,
)
from .models.templates import CypherTemplates, NodeTemplate, RelationshipTemplate

logger = get_logger(__name__)

APPROVAL_STATUS_APPROVED = 'APPROVED'
DEFAULT_APPROVER = 'system'

# Properties owned by the approval contract; mappings may not write them.
APPROVAL_PROPERTIES = frozenset({
    'approvalStatus',
    'approvedBy',
    'approvedAt',
    'configVersion',
    'syncedAt',
    'updatedAt',
    'lastSyncedAt',
})
REQUIRED_APPROVAL_FIELDS = ('approvalStatus', 'approvedBy', 'approvedAt')

# Refreshed on match when a mapping does not say otherwise.
_MUTABLE_PROPERTY_NAMES = frozenset({'title', 'name'})
_MUTABLE_PROPERTY_TYPES = frozenset({'date', 'datetime'})

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_PARAMETER = re.compile(r'\$([A-Za-z_][A-Za-z0-9_]*)')


def _identifier(name: str, what: str) -> str:
    """Return ``name`` if it is safe to splice into Cypher as an identifier."""
    if not _IDENTIFIER.match(name):
        raise SchemaMismatchError(
            f'Invalid {what} identifier: {name!r}',
            context={'identifier': name},
        )
    return name


def _updates_on_match(mapping: PropertyMapping, node: NodeSpec) -> bool:
    if mapping.update_on_match is not None:
        return mapping.update_on_match
    if mapping.neo_property in _MUTABLE_PROPERTY_NAMES:
        return True
    if mapping.neo_property.endswith('Date'):
        return True
    spec = node.get_property(mapping.neo_property)
    return spec is not None and spec.type.lower() in _MUTABLE_PROPERTY_TYPES


# =============================================================================
# Generation
# =============================================================================


def generate_templates(
    nodes: Iterable[NodeSpec],
    relationships: Iterable[RelationshipSpec],
    mapping_rules: Iterable[MappingRule],
    environment: Environment | str = Environment.STAGING,
    config_version: str = '',
    prefix: str | None = None,
) -> CypherTemplates:
    """
    Generate Cypher templates from a graph model.

    Node specs without a mapping rule, and mapping rules that do not match
    their node spec, are skipped with a warning rather than failing the
    whole generation.

    Args:
        nodes: Node definitions from the graph model
        relationships: Relationship definitions from the graph model
        mapping_rules: Postgres view → node mapping rules
        environment: Target environment (decides the label prefix)
        config_version: Version identifier recorded on the result
        prefix: Explicit label prefix (defaults to the environment's)

    Returns:
        CypherTemplates keyed by node label and relationship type
    """
    env = Environment(environment)
    if prefix is None:
        prefix = label_prefix(env)

    nodes = list(nodes)
    rules = {rule.node_label: rule for rule in mapping_rules}
    node_specs = {node.label: node for node in nodes}

    result = CypherTemplates(environment=env.value, config_version=config_version)

    for node in nodes:
        if node.derived:
            logger.debug('templates.derived_node_skipped', label=node.label)
            continue
        rule = rules.get(node.label)
        if rule is None:
            warning = f'No mapping rule found for node: {node.label}'
            logger.warning('templates.mapping_rule_missing', label=node.label)
            result.warnings.append(warning)
            continue
        try:
            template = generate_node_template(node, rule, prefix)
            check = validate_template(template.cypher, node_template=True)
            if not check.valid:
                raise TemplateError(
                    f'Generated template for {node.label} failed validation',
                    context={'errors': check.errors},
                )
        except (SchemaMismatchError, TemplateError) as e:
            logger.warning('templates.node_skipped', label=node.label, error=str(e))
            result.warnings.append(f'Skipped node {node.label}: {e}')
            continue
        result.nodes[node.label] = template

    for rel in relationships:
        from_node = node_specs.get(rel.from_label)
        to_node = node_specs.get(rel.to_label)
        if from_node is None or to_node is None:
            warning = f'Relationship {rel.type} references an undefined node ({rel.from_label} -> {rel.to_label})'
            logger.warning('templates.relationship_skipped', type=rel.type)
            result.warnings.append(warning)
            continue
        try:
            template = generate_relationship_template(rel, from_node, to_node, prefix)
        except SchemaMismatchError as e:
            result.warnings.append(f'Skipped relationship {rel.type}: {e}')
            continue

        key = rel.type
        if key in result.relationships:
            key = f'{rel.from_label}-{rel.type}->{rel.to_label}'
            logger.debug('templates.relationship_keyed_by_endpoints', type=rel.type, key=key)
        result.relationships[key] = template

    for rule in rules.values():
        from_node = node_specs.get(rule.node_label)
        if from_node is None or rule.node_label not in result.nodes:
            continue
        for extraction in rule.relationships:
            to_node = node_specs.get(extraction.to_label)
            if to_node is None:
                result.warnings.append(
                    f'Extraction rule {extraction.type} on {rule.node_label} targets undefined node {extraction.to_label}'
                )
                continue
            try:
                template = generate_extraction_template(extraction, from_node, to_node, prefix)
            except SchemaMismatchError as e:
                result.warnings.append(f'Skipped extraction rule {extraction.type} on {rule.node_label}: {e}')
                continue
            result.extractions[extraction_key(rule.node_label, extraction)] = template

    logger.info(
        'templates.generated',
        environment=env.value,
        config_version=config_version,
        node_templates=len(result.nodes),
        relationship_templates=len(result.relationships),
        warnings=len(result.warnings),
    )
    return result


def generate_node_template(
    node: NodeSpec,
    rule: MappingRule,
    prefix: str,
) -> NodeTemplate:
    """
    Generate the MERGE template for a node.

    Raises:
        SchemaMismatchError: If the rule does not fit the node spec
    """
    graph_label = _identifier(prefixed_label(node.label, prefix), 'label')

    if not rule.key_fields:
        raise SchemaMismatchError(
            f'Mapping rule for {node.label} has no key fields',
            context={'view': rule.postgres_view},
        )
    if rule.key_strategy is KeyStrategy.COLUMN and len(rule.key_fields) != 1:
        raise SchemaMismatchError(
            f'Column key strategy for {node.label} needs exactly one key field',
            context={'key_fields': rule.key_fields},
        )

    declared = set(node.property_names)
    for mapping in rule.property_mappings:
        _identifier(mapping.neo_property, 'property')
        if mapping.neo_property in APPROVAL_PROPERTIES:
            raise SchemaMismatchError(
                f'Mapping for {node.label} writes reserved approval property {mapping.neo_property}',
                context={'column': mapping.pg_column},
            )
        if declared and mapping.neo_property not in declared:
            raise SchemaMismatchError(
                f'Mapping for {node.label} targets undeclared property {mapping.neo_property}',
                context={'column': mapping.pg_column},
            )
        if mapping.transform is Transform.ENUM_MAP and not mapping.enum_map:
            raise SchemaMismatchError(
                f'enum_map transform on {node.label}.{mapping.neo_property} has no enum_map table',
            )

    key_properties = [_identifier(name, 'property') for name in rule.key_property_names(node)]
    if not rule.keys_on(node):
        raise SchemaMismatchError(
            f'Mapping rule for {node.label} merges on {key_properties}, not key property {node.key_property}',
            context={'view': rule.postgres_view},
        )

    mapped = {m.neo_property for m in rule.property_mappings}
    missing_required = [
        p.name
        for p in node.properties
        if p.required and p.name not in key_properties and p.name not in mapped
    ]
    if missing_required:
        logger.warning('templates.required_unmapped', label=node.label, properties=missing_required)

    create_properties: list[str] = []
    match_properties: list[str] = []
    for mapping in rule.property_mappings:
        if mapping.neo_property in key_properties:
            continue
        if mapping.neo_property in create_properties:
            continue
        create_properties.append(mapping.neo_property)
        if _updates_on_match(mapping, node):
            match_properties.append(mapping.neo_property)

    key_clause = ', '.join(f'{name}: ${name}' for name in key_properties)

    create_lines = [f'  n.{name} = ${name}' for name in create_properties]
    create_lines += [
        f"  n.approvalStatus = '{APPROVAL_STATUS_APPROVED}'",
        '  n.approvedBy = $approvedBy',
        '  n.approvedAt = $approvedAt',
        '  n.configVersion = $configVersion',
        '  n.syncedAt = datetime()',
    ]
    match_lines = [f'  n.{name} = ${name}' for name in match_properties]
    match_lines += [
        '  n.updatedAt = datetime()',
        '  n.lastSyncedAt = datetime()',
    ]

    cypher = '\n'.join([
        f'MERGE (n:{graph_label} {{{key_clause}}})',
        'ON CREATE SET',
        ',\n'.join(create_lines),
        'ON MATCH SET',
        ',\n'.join(match_lines),
        f'RETURN n.{key_properties[0]} AS key',
    ])

    parameters = [*key_properties, *create_properties, 'approvedBy', 'approvedAt', 'configVersion']

    return NodeTemplate(
        label=node.label,
        graph_label=graph_label,
        cypher=cypher,
        parameters=parameters,
        key_properties=key_properties,
        create_properties=create_properties,
        match_properties=match_properties,
    )


def generate_relationship_template(
    relationship: RelationshipSpec,
    from_node: NodeSpec,
    to_node: NodeSpec,
    prefix: str,
) -> RelationshipTemplate:
    """Generate the MATCH/MATCH/MERGE template for a relationship."""
    from_label = _identifier(prefixed_label(relationship.from_label, prefix), 'label')
    to_label = _identifier(prefixed_label(relationship.to_label, prefix), 'label')
    rel_type = _identifier(relationship.type, 'relationship type')
    from_key = _identifier(from_node.key_property, 'property')
    to_key = _identifier(to_node.key_property, 'property')

    create_lines = [
        f'  r.{_identifier(prop.name, "property")} = ${prop.name}'
        for prop in relationship.properties
    ]
    create_lines += [
        '  r.configVersion = $configVersion',
        '  r.syncedAt = datetime()',
    ]

    cypher = '\n'.join([
        f'MATCH (from:{from_label} {{{from_key}: $fromKey}})',
        f'MATCH (to:{to_label} {{{to_key}: $toKey}})',
        f'MERGE (from)-[r:{rel_type}]->(to)',
        'ON CREATE SET',
        ',\n'.join(create_lines),
        'ON MATCH SET',
        '  r.updatedAt = datetime()',
        'RETURN count(r) AS count',
    ])

    parameters = ['fromKey', 'toKey', 'configVersion']
    parameters += [prop.name for prop in relationship.properties]

    return RelationshipTemplate(
        type=relationship.type,
        from_label=relationship.from_label,
        to_label=relationship.to_label,
        from_key_property=from_key,
        to_key_property=to_key,
        cypher=cypher,
        parameters=parameters,
    )


def extraction_key(node_label: str, extraction: RelationshipExtractionRule) -> str:
    """Key of an extraction template in CypherTemplates.extractions."""
    return f'{node_label}.{extraction.type}->{extraction.to_label}'


def generate_extraction_template(
    extraction: RelationshipExtractionRule,
    from_node: NodeSpec,
    to_node: NodeSpec,
    prefix: str,
) -> RelationshipTemplate:
    """
    Generate the per-row template for a mapping-rule extraction rule.

    ``$fromKey`` is the synced node's key and ``$toKey`` the row's
    ``match_field`` value. The column strategy matches the target property
    exactly; lookup matches every target whose property is contained in the
    value, case-insensitively, so one value may link to several targets.
    """
    from_label = _identifier(prefixed_label(from_node.label, prefix), 'label')
    to_label = _identifier(prefixed_label(to_node.label, prefix), 'label')
    rel_type = _identifier(extraction.type, 'relationship type')
    from_key = _identifier(from_node.key_property, 'property')
    target = _identifier(extraction.target_property or to_node.key_property, 'property')

    if extraction.match_strategy is MatchStrategy.LOOKUP:
        match_to = [
            f'MATCH (to:{to_label})',
            f'WHERE to.{target} IS NOT NULL AND toLower($toKey) CONTAINS toLower(to.{target})',
        ]
    else:
        match_to = [f'MATCH (to:{to_label} {{{target}: $toKey}})']

    cypher = '\n'.join([
        f'MATCH (from:{from_label} {{{from_key}: $fromKey}})',
        *match_to,
        f'MERGE (from)-[r:{rel_type}]->(to)',
        'ON CREATE SET',
        '  r.configVersion = $configVersion,',
        '  r.syncedAt = datetime()',
        'ON MATCH SET',
        '  r.updatedAt = datetime()',
        'RETURN count(r) AS count',
    ])

    return RelationshipTemplate(
        type=extraction.type,
        from_label=from_node.label,
        to_label=to_node.label,
        from_key_property=from_key,
        to_key_property=target,
        cypher=cypher,
        match_strategy=extraction.match_strategy.value,
        parameters=['fromKey', 'toKey', 'configVersion'],
    )


# =============================================================================
# Validation
# =============================================================================


@dataclass
class TemplateValidation:
    """Outcome of the structural safety check."""

    valid: bool
    errors: list[str] = field(default_factory=list)


_PAIRS = {')': '(', '}': '{', ']': '['}
_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"|`[^`]*`")
_ON_CREATE = re.compile(r'ON\s+CREATE\s+SET(?P<body>.*?)(?:ON\s+MATCH\s+SET|RETURN\b|$)', re.DOTALL)


def _is_node_merge(cypher: str) -> bool:
    merge = re.search(r'MERGE\s*\(([^)]*)\)\s*(-|<)?', cypher)
    return merge is not None and merge.group(2) is None


def validate_template(template: str, node_template: bool | None = None) -> TemplateValidation:
    """
    Shallow structural check of a Cypher template.

    Checks grouping symbols are balanced and, for node templates, that the
    ON CREATE SET clause stamps approvalStatus, approvedBy and approvedAt.
    Quoted literals and backtick identifiers are ignored.

    Args:
        template: Cypher text
        node_template: Force node (True) / relationship (False) handling;
            detected from the MERGE pattern when None

    Returns:
        TemplateValidation with any errors found
    """
    errors: list[str] = []
    bare = _LITERAL.sub("''", template)

    stack: list[str] = []
    for ch in bare:
        if ch in '({[':
            stack.append(ch)
        elif ch in _PAIRS:
            if not stack or stack[-1] != _PAIRS[ch]:
                errors.append(f'Unbalanced grouping symbol: unexpected {ch!r}')
                break
            stack.pop()
    else:
        if stack:
            errors.append(f'Unbalanced grouping symbols: {len(stack)} left open')

    if node_template is None:
        node_template = 'MERGE' in bare and 'ON CREATE SET' in bare and _is_node_merge(bare)

    if node_template:
        on_create = _ON_CREATE.search(template)
        if on_create is None:
            errors.append('Missing ON CREATE SET clause')
        else:
            body = on_create.group('body')
            for name in REQUIRED_APPROVAL_FIELDS:
                if name not in body:
                    errors.append(f'Missing {name} in ON CREATE SET clause')

    return TemplateValidation(valid=not errors, errors=errors)


# =============================================================================
# Rendering & parameters
# =============================================================================


def _format_literal(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return f"datetime('{value.isoformat()}')"
    if isinstance(value, date):
        return f"date('{value.isoformat()}')"
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(_format_literal(v) for v in value) + ']'
    if isinstance(value, dict):
        return '{' + ', '.join(f'{k}: {_format_literal(v)}' for k, v in value.items()) + '}'
    text = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{text}'"


def render_template(template: str, params: dict[str, Any]) -> str:
    """
    Substitute parameter values into a template for previews and debugging.

    Never used for execution: writes always go through driver-side
    parameter binding.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in params:
            return match.group(0)
        return _format_literal(params[name])

    return _PARAMETER.sub(_replace, template)


def to_graph_value(value: Any) -> Any:
    """Coerce a Postgres value into a type the neo4j driver can bind."""
    if value is None or isinstance(value, (str, bool, int, float, datetime, date)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple, set)):
        return [to_graph_value(v) for v in value]
    if isinstance(value, dict):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def to_graph_datetime(value: Any) -> datetime | None:
    """Coerce a date, datetime or ISO-8601 string the way TO_DATETIME does."""
    if value is None:
        return None
    return _as_datetime(value)


def apply_transform(value: Any, mapping: PropertyMapping) -> Any:
    """Apply a mapping's transform tag to one column value."""
    if value is None or mapping.transform is None:
        return value

    if mapping.transform is Transform.TO_DATETIME:
        return _as_datetime(value)
    if mapping.transform is Transform.TO_DATE:
        return _as_datetime(value).date()
    if mapping.transform is Transform.TO_UPPER:
        return str(value).upper()
    if mapping.transform is Transform.TO_LOWER:
        return str(value).lower()
    if mapping.transform is Transform.ENUM_MAP:
        return (mapping.enum_map or {}).get(str(value), value)
    return value


def hash_key(row: dict[str, Any], fields: list[str]) -> str:
    """Deterministic SHA-256 merge key over ``fields`` of ``row``."""
    joined = '|'.join('' if row.get(f) is None else str(row.get(f)) for f in fields)
    return hashlib.sha256(joined.encode('utf-8')).hexdigest()


def build_node_params(
    template: NodeTemplate,
    rule: MappingRule,
    row: dict[str, Any],
    config_version: str,
) -> dict[str, Any]:
    """
    Turn one curated view row into the parameters of a node template.

    Approval attribution falls back to 'system' / now when the view omits it.

    Raises:
        MalformedRowError: If a key value is missing or a transform fails
    """
    params: dict[str, Any] = {}

    try:
        for mapping in rule.property_mappings:
            params[mapping.neo_property] = to_graph_value(
                apply_transform(row.get(mapping.pg_column), mapping)
            )

        if rule.key_strategy is KeyStrategy.HASH:
            missing = [f for f in rule.key_fields if row.get(f) is None]
            if missing:
                raise MalformedRowError(
                    f'Row for {template.label} is missing key fields',
                    context={'missing': missing},
                )
            params[template.key_properties[0]] = hash_key(row, rule.key_fields)
        else:
            for field_name, prop in zip(rule.key_fields, template.key_properties):
                if params.get(prop) is None:
                    params[prop] = to_graph_value(row.get(field_name))

        approved_at = row.get('approved_at')
        params['approvedBy'] = row.get('approved_by') or DEFAULT_APPROVER
        params['approvedAt'] = _as_datetime(approved_at) if approved_at else datetime.now(timezone.utc)
    except (ValueError, TypeError) as e:
        raise MalformedRowError(
            f'Cannot map row for {template.label}: {e}',
            context={'view': rule.postgres_view},
        ) from e

    params['configVersion'] = config_version

    missing_keys = [k for k in template.key_properties if params.get(k) is None]
    if missing_keys:
        raise MalformedRowError(
            f'Row for {template.label} has no value for key properties',
            context={'missing': missing_keys, 'view': rule.postgres_view},
        )

    return {name: params.get(name) for name in template.parameters}


def build_relationship_params(
    template: RelationshipTemplate,
    from_key: Any,
    to_key: Any,
    config_version: str,
    properties: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Parameters for a relationship template."""
    params: dict[str, Any] = {name: None for name in template.parameters}
    for name, value in (properties or {}).items():
        if name in params:
            params[name] = to_graph_value(value)
    params['fromKey'] = to_graph_value(from_key)
    params['toKey'] = to_graph_value(to_key)
    params['configVersion'] = config_version
    return params
