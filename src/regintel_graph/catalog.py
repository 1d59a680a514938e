"""
Built-in regulatory graph configuration.

Five primary entity types are synced from the curated approved-only views:

    Drug      ← vw_approved_drugs
    Decision  ← vw_approved_decisions
    Trial     ← vw_approved_trials
    Guidance  ← vw_approved_guidance
    NewsItem  ← vw_approved_news

Agency, TherapeuticArea and SafetyAlert are derived by the pipeline itself
and carry no mapping rule.

Rows are prepared before templating: missing display fields get their
placeholder values and Trial rows gain a location and a display name.
"""

import re
from functools import lru_cache
from typing import Any, Callable

from .config import get_settings
from .models.graph_model import (
    GraphConfig,
    KeyStrategy,
    MappingRule,
    NodeSpec,
    PropertyMapping,
    PropertySpec,
    RelationshipSpec,
    Transform,
)

# Primary entity sync order. Later inference passes depend on it.
ENTITY_ORDER: tuple[str, ...] = ('Drug', 'Decision', 'Trial', 'Guidance', 'NewsItem')

RowPreparer = Callable[[dict[str, Any]], dict[str, Any]]


def _prop(name: str, type: str = 'string', required: bool = False, description: str = '') -> PropertySpec:
    return PropertySpec(name=name, type=type, required=required, description=description)


def _map(
    neo_property: str,
    pg_column: str,
    transform: Transform | None = None,
    update_on_match: bool | None = None,
) -> PropertyMapping:
    return PropertyMapping(
        neo_property=neo_property,
        pg_column=pg_column,
        transform=transform,
        update_on_match=update_on_match,
    )


# =============================================================================
# Node specs
# =============================================================================

NODES: list[NodeSpec] = [
    NodeSpec(
        label='Drug',
        description='Approved medicinal product',
        key_property='drugId',
        properties=[
            _prop('drugId', required=True),
            _prop('name', required=True),
            _prop('therapeuticArea'),
            _prop('approvedDate', 'datetime'),
            _prop('biomarkers'),
            _prop('url'),
            _prop('sourceDomain'),
        ],
    ),
    NodeSpec(
        label='Decision',
        description='Regulatory decision (approval, refusal, variation, ...)',
        key_property='decisionId',
        properties=[
            _prop('decisionId', required=True),
            _prop('title', required=True),
            _prop('decisionDate', 'datetime'),
            _prop('type'),
            _prop('agency'),
            _prop('agencyDomain'),
            _prop('drugNameRaw', description='Free-text drug attribution'),
            _prop('url'),
        ],
    ),
    NodeSpec(
        label='Trial',
        description='Clinical trial or advisory meeting',
        key_property='trialId',
        properties=[
            _prop('trialId', required=True),
            _prop('name', description='Display name'),
            _prop('title', required=True),
            _prop('location'),
            _prop('phase'),
            _prop('status'),
            _prop('meetingDate', 'datetime'),
            _prop('drugNameRaw'),
            _prop('url'),
            _prop('sourceDomain'),
        ],
    ),
    NodeSpec(
        label='Guidance',
        description='Agency guidance document',
        key_property='guidanceId',
        properties=[
            _prop('guidanceId', required=True),
            _prop('title', required=True),
            _prop('issuedDate', 'datetime'),
            _prop('agency'),
            _prop('category'),
            _prop('url'),
            _prop('sourceDomain'),
        ],
    ),
    NodeSpec(
        label='NewsItem',
        description='News item or press release',
        key_property='newsId',
        properties=[
            _prop('newsId', required=True),
            _prop('title', required=True),
            _prop('publishedDate', 'datetime'),
            _prop('type'),
            _prop('severity'),
            _prop('drugNameRaw'),
            _prop('agency'),
            _prop('url'),
            _prop('sourceDomain'),
        ],
    ),
    NodeSpec(
        label='Agency',
        description='Issuing regulatory agency',
        key_property='code',
        derived=True,
        properties=[_prop('code', required=True), _prop('name'), _prop('domain')],
    ),
    NodeSpec(
        label='TherapeuticArea',
        key_property='name',
        derived=True,
        properties=[_prop('name', required=True), _prop('category')],
    ),
    NodeSpec(
        label='SafetyAlert',
        description='News item promoted to a safety signal',
        key_property='alertId',
        derived=True,
        properties=[
            _prop('alertId', required=True),
            _prop('title'),
            _prop('publishedDate', 'datetime'),
            _prop('type'),
            _prop('severity'),
            _prop('drugNameRaw'),
            _prop('url'),
            _prop('sourceDomain'),
        ],
    ),
]


RELATIONSHIPS: list[RelationshipSpec] = [
    RelationshipSpec(type='SUBJECT_OF', from_label='Drug', to_label='Decision'),
    RelationshipSpec(type='ISSUED_BY', from_label='Decision', to_label='Agency'),
    RelationshipSpec(
        type='APPROVED_BY',
        from_label='Drug',
        to_label='Agency',
        properties=[_prop('approvalDate', 'datetime')],
    ),
    RelationshipSpec(type='TREATS', from_label='Drug', to_label='TherapeuticArea'),
    RelationshipSpec(
        type='HAS_ALERT',
        from_label='Drug',
        to_label='SafetyAlert',
        properties=[_prop('severity')],
    ),
    RelationshipSpec(type='ISSUED_BY', from_label='SafetyAlert', to_label='Agency'),
    RelationshipSpec(type='STUDIES', from_label='Trial', to_label='Drug'),
    RelationshipSpec(type='HELD_BY', from_label='Trial', to_label='Agency'),
    RelationshipSpec(type='MENTIONED_IN', from_label='Drug', to_label='NewsItem'),
    RelationshipSpec(type='ISSUED_BY', from_label='Guidance', to_label='Agency'),
    RelationshipSpec(type='ISSUED_BY', from_label='NewsItem', to_label='Agency'),
]


# =============================================================================
# Mapping rules
# =============================================================================

MAPPING_RULES: list[MappingRule] = [
    MappingRule(
        postgres_view='vw_approved_drugs',
        node_label='Drug',
        key_strategy=KeyStrategy.COLUMN,
        key_fields=['drug_id'],
        property_mappings=[
            _map('drugId', 'drug_id'),
            _map('name', 'drug_name'),
            _map('therapeuticArea', 'therapeutic_area', update_on_match=True),
            _map('approvedDate', 'approved_date', Transform.TO_DATETIME),
            _map('biomarkers', 'biomarkers', update_on_match=True),
            _map('url', 'url', update_on_match=True),
            _map('sourceDomain', 'sourceDomain'),
        ],
    ),
    MappingRule(
        postgres_view='vw_approved_decisions',
        node_label='Decision',
        key_fields=['decision_id'],
        property_mappings=[
            _map('decisionId', 'decision_id'),
            _map('title', 'title'),
            _map('decisionDate', 'decision_date', Transform.TO_DATETIME),
            _map('type', 'decision_type', Transform.TO_UPPER, update_on_match=True),
            _map('agency', 'agency'),
            _map('agencyDomain', 'agency_domain'),
            _map('drugNameRaw', 'drug_name_raw'),
            _map('url', 'url'),
        ],
    ),
    MappingRule(
        postgres_view='vw_approved_trials',
        node_label='Trial',
        key_fields=['trial_id'],
        property_mappings=[
            _map('trialId', 'trial_id'),
            _map('name', 'display_name'),
            _map('title', 'title'),
            _map('location', 'location', update_on_match=True),
            _map('phase', 'phase', update_on_match=True),
            _map('status', 'trial_status', update_on_match=True),
            _map('meetingDate', 'meeting_date', Transform.TO_DATETIME),
            _map('drugNameRaw', 'drug_name_raw'),
            _map('url', 'url'),
            _map('sourceDomain', 'sourceDomain'),
        ],
    ),
    MappingRule(
        postgres_view='vw_approved_guidance',
        node_label='Guidance',
        key_fields=['guidance_id'],
        property_mappings=[
            _map('guidanceId', 'guidance_id'),
            _map('title', 'title'),
            _map('issuedDate', 'issued_date', Transform.TO_DATETIME),
            _map('agency', 'agency'),
            _map('category', 'category'),
            _map('url', 'url'),
            _map('sourceDomain', 'sourceDomain'),
        ],
    ),
    MappingRule(
        postgres_view='vw_approved_news',
        node_label='NewsItem',
        key_fields=['alert_id'],
        property_mappings=[
            _map('newsId', 'alert_id'),
            _map('title', 'title'),
            _map('publishedDate', 'published_date', Transform.TO_DATETIME),
            _map('type', 'alert_type'),
            _map('severity', 'severity'),
            _map('drugNameRaw', 'drug_name_raw'),
            _map('agency', 'agency', update_on_match=True),
            _map('url', 'url'),
            _map('sourceDomain', 'sourceDomain'),
        ],
    ),
]


@lru_cache
def regulatory_graph_config(config_version: str | None = None) -> GraphConfig:
    """
    The built-in regulatory GraphConfig.

    Cached per version so generated templates are reused across runs.

    Args:
        config_version: Version stamp (defaults to SYNC_CONFIG_VERSION)
    """
    return GraphConfig(
        config_version=config_version or get_settings().SYNC_CONFIG_VERSION,
        nodes=NODES,
        relationships=RELATIONSHIPS,
        mapping_rules=MAPPING_RULES,
    )


# =============================================================================
# Row preparation
# =============================================================================

# Placeholders for display fields the views may leave empty.
ROW_DEFAULTS: dict[str, dict[str, Any]] = {
    'Drug': {'drug_name': 'Unknown', 'therapeutic_area': 'Unknown', 'biomarkers': ''},
    'Decision': {
        'title': 'Unknown Decision',
        'decision_type': 'UNKNOWN',
        'agency': 'Unknown',
        'agency_domain': '',
        'drug_name_raw': '',
    },
    'Trial': {
        'phase': 'Unknown',
        'trial_status': 'Unknown',
        'drug_name_raw': '',
        'sourceDomain': '',
    },
    'Guidance': {
        'title': 'Unknown Guidance',
        'agency': 'Unknown',
        'category': 'General',
        'sourceDomain': '',
    },
    'NewsItem': {
        'title': 'Unknown News',
        'alert_type': 'PRESS',
        'severity': 'INFO',
        'drug_name_raw': '',
        'agency': 'OTHER',
        'sourceDomain': '',
    },
}

_LOCATION_AFTER_PREPOSITION = re.compile(r'\b(?:in|at)\s+([A-Z][a-z]+(?:[\s,]+[A-Z][a-z]+)*)')
_LOCATION_AFTER_DASH = re.compile(r'[-–]\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)')

TRIAL_NAME_MAX_LENGTH = 60
UNKNOWN_LOCATION = 'Location Unknown'


def extract_location(title: str) -> str | None:
    """
    Pull a meeting location out of a trial title.

    Handles "... in Amsterdam", "... at Silver Spring" and
    "CHMP meeting - Amsterdam".
    """
    match = _LOCATION_AFTER_PREPOSITION.search(title) or _LOCATION_AFTER_DASH.search(title)
    return match.group(1) if match else None


def format_trial_name(title: str | None, location: str | None, phase: str | None) -> str:
    """Display name: optional phase prefix, shortened title, location suffix."""
    if not title:
        return 'Unknown Trial'

    short_title = title
    if len(title) > TRIAL_NAME_MAX_LENGTH:
        short_title = title[:TRIAL_NAME_MAX_LENGTH - 3] + '...'

    if phase and phase != 'Unknown' and 'phase' not in title.lower():
        short_title = f'{phase}: {short_title}'

    if location and location.lower() not in title.lower():
        return f'{short_title} ({location})'
    return short_title


def _with_defaults(label: str, row: dict[str, Any]) -> dict[str, Any]:
    prepared = dict(row)
    for column, default in ROW_DEFAULTS.get(label, {}).items():
        if prepared.get(column) in (None, ''):
            prepared[column] = default
    return prepared


def prepare_trial_row(row: dict[str, Any]) -> dict[str, Any]:
    """Add ``location`` and ``display_name`` to a vw_approved_trials row."""
    prepared = _with_defaults('Trial', row)
    title = row.get('title') or ''
    location = extract_location(title)
    prepared['display_name'] = format_trial_name(row.get('title'), location, prepared.get('phase'))
    prepared['location'] = location or UNKNOWN_LOCATION
    prepared['title'] = row.get('title') or 'Unknown Trial'
    return prepared


ROW_PREPARERS: dict[str, RowPreparer] = {
    'Drug': lambda row: _with_defaults('Drug', row),
    'Decision': lambda row: _with_defaults('Decision', row),
    'Trial': prepare_trial_row,
    'Guidance': lambda row: _with_defaults('Guidance', row),
    'NewsItem': lambda row: _with_defaults('NewsItem', row),
}
