"""
Relationship inference.

A fixed, ordered battery of passes. Each pass is one statement that matches
two label sets and MERGEs a relationship wherever a join condition holds:

- exact key match          (Decision.agency → Agency.code)
- domain containment       (SafetyAlert.sourceDomain ⊇ Agency.domain)
- name containment         (Decision.drugNameRaw ⊇ Drug.name, case-insensitive)

Passes run strictly in order, each to completion before the next starts:
APPROVED_BY walks the SUBJECT_OF and ISSUED_BY edges created by the two
passes before it.

Name containment is a best-effort heuristic. A free-text attribution that
contains several drug names links to every one of them.
"""

from dataclasses import dataclass
from typing import Callable

from ..cypher_templates import build_relationship_params, extraction_key
from ..errors import Neo4jConnectionError, Neo4jError, PhaseError
from ..logging import get_logger
from ..models.environment import prefixed_label
from ..models.graph_model import MappingRule
from ..models.templates import CypherTemplates
from ..repository import GraphRepository
from .entity_sync import SyncedRow

logger = get_logger(__name__)


class Labels:
    """Attribute access to environment-prefixed labels: ``L.Drug``."""

    def __init__(self, prefix: str):
        self._prefix = prefix

    def __getattr__(self, name: str) -> str:
        if name.startswith('_'):
            raise AttributeError(name)
        return prefixed_label(name, self._prefix)


_ON_CREATE = """
    ON CREATE SET
        r.configVersion = $configVersion,
        r.syncedAt = datetime(){extra}
    ON MATCH SET
        r.updatedAt = datetime()
    RETURN count(r) AS count
"""


def _stamps(extra: str = '') -> str:
    return _ON_CREATE.format(extra=f',\n        {extra}' if extra else '')


@dataclass(frozen=True)
class InferencePass:
    """One ordered inference step."""

    name: str
    type: str
    build: Callable[[Labels], str]

    def cypher(self, prefix: str) -> str:
        return self.build(Labels(prefix))


def _name_containment(
    source_var: str,
    source_label: str,
    rel: str,
    drug_first: bool,
    extra: str = '',
) -> Callable[[Labels], str]:
    """Drug name contained in the source's drugNameRaw."""

    def build(L: Labels) -> str:
        pattern = f'(drug)-[r:{rel}]->({source_var})' if drug_first else f'({source_var})-[r:{rel}]->(drug)'
        return f"""
            MATCH ({source_var}:{getattr(L, source_label)})
            MATCH (drug:{L.Drug})
            WHERE {source_var}.drugNameRaw IS NOT NULL
              AND drug.name IS NOT NULL
              AND toLower({source_var}.drugNameRaw) CONTAINS toLower(drug.name)
            MERGE {pattern}
        """ + _stamps(extra)

    return build


def _agency_code(source_var: str, source_label: str, normalize: bool = True) -> Callable[[Labels], str]:
    """Source's agency field equals the Agency code."""

    def build(L: Labels) -> str:
        agency = f'toUpper({source_var}.agency)' if normalize else f'{source_var}.agency'
        other = f"\n              AND {source_var}.agency <> 'OTHER'" if not normalize else ''
        return f"""
            MATCH ({source_var}:{getattr(L, source_label)})
            MATCH (a:{L.Agency})
            WHERE {source_var}.agency IS NOT NULL{other}
              AND a.code = {agency}
            MERGE ({source_var})-[r:ISSUED_BY]->(a)
        """ + _stamps()

    return build


def _approved_by(L: Labels) -> str:
    return f"""
        MATCH (drug:{L.Drug})-[:SUBJECT_OF]->(dec:{L.Decision})-[:ISSUED_BY]->(a:{L.Agency})
        WHERE dec.type = 'APPROVAL'
        MERGE (drug)-[r:APPROVED_BY]->(a)
    """ + _stamps('r.approvalDate = dec.decisionDate')


def _treats(L: Labels) -> str:
    return f"""
        MATCH (drug:{L.Drug})
        MATCH (ta:{L.TherapeuticArea})
        WHERE drug.therapeuticArea IS NOT NULL
          AND ta.name = drug.therapeuticArea
        MERGE (drug)-[r:TREATS]->(ta)
    """ + _stamps()


def _alert_issued_by(L: Labels) -> str:
    return f"""
        MATCH (sa:{L.SafetyAlert})
        MATCH (a:{L.Agency})
        WHERE sa.sourceDomain IS NOT NULL
          AND coalesce(a.domain, '') <> ''
          AND toLower(sa.sourceDomain) CONTAINS toLower(a.domain)
        MERGE (sa)-[r:ISSUED_BY]->(a)
    """ + _stamps()


def _held_by(L: Labels) -> str:
    return f"""
        MATCH (trial:{L.Trial})
        MATCH (a:{L.Agency})
        WHERE trial.sourceDomain IS NOT NULL
          AND ((coalesce(a.domain, '') <> '' AND toLower(trial.sourceDomain) CONTAINS toLower(a.domain))
               OR (a.code = 'EMA' AND toLower(trial.sourceDomain) CONTAINS 'ema.europa.eu')
               OR (a.code = 'FDA' AND toLower(trial.sourceDomain) CONTAINS 'fda.gov')
               OR (a.code = 'PMDA' AND toLower(trial.sourceDomain) CONTAINS 'pmda.go.jp'))
        MERGE (trial)-[r:HELD_BY]->(a)
    """ + _stamps()


INFERENCE_PASSES: tuple[InferencePass, ...] = (
    InferencePass('decision_subject_of', 'SUBJECT_OF', _name_containment('dec', 'Decision', 'SUBJECT_OF', True)),
    InferencePass('decision_issued_by', 'ISSUED_BY', _agency_code('dec', 'Decision')),
    InferencePass('drug_approved_by', 'APPROVED_BY', _approved_by),
    InferencePass('drug_treats', 'TREATS', _treats),
    InferencePass(
        'drug_has_alert',
        'HAS_ALERT',
        _name_containment('sa', 'SafetyAlert', 'HAS_ALERT', True, 'r.severity = sa.severity'),
    ),
    InferencePass('alert_issued_by', 'ISSUED_BY', _alert_issued_by),
    InferencePass('trial_studies', 'STUDIES', _name_containment('trial', 'Trial', 'STUDIES', False)),
    InferencePass('trial_held_by', 'HELD_BY', _held_by),
    InferencePass('news_mentioned_in', 'MENTIONED_IN', _name_containment('news', 'NewsItem', 'MENTIONED_IN', True)),
    InferencePass('guidance_issued_by', 'ISSUED_BY', _agency_code('g', 'Guidance')),
    InferencePass('news_issued_by', 'ISSUED_BY', _agency_code('news', 'NewsItem', normalize=False)),
)


class RelationshipInferrer:
    """
    Runs the inference battery, then the mapping-rule extraction passes.

    A failed pass is recorded and the battery continues; later passes that
    depend on it simply match fewer rows.
    """

    def __init__(
        self,
        repository: GraphRepository,
        passes: tuple[InferencePass, ...] = INFERENCE_PASSES,
    ):
        self.repository = repository
        self.passes = passes

    async def run_battery(
        self,
        should_stop: Callable[[], bool] | None = None,
    ) -> tuple[dict[str, int], list[str]]:
        """
        Run every inference pass in order.

        Args:
            should_stop: Checked between passes; True stops the battery

        Returns:
            (counts keyed by pass name, recorded errors)

        Raises:
            Neo4jConnectionError: If the graph store becomes unreachable
        """
        counts: dict[str, int] = {}
        errors: list[str] = []

        for inference in self.passes:
            if should_stop is not None and should_stop():
                logger.info('relationships.battery_stopped', before=inference.name)
                break
            try:
                count = await self.repository.run_inference_pass(inference.cypher(self.repository.prefix))
            except Neo4jConnectionError:
                raise
            except Neo4jError as e:
                error = PhaseError(
                    f'Inference pass {inference.name} failed: {e.message}',
                    phase='relationship_inference',
                    context={'pass': inference.name},
                )
                errors.append(str(error))
                logger.warning('relationships.pass_failed', name=inference.name, error=e.message)
                continue
            counts[inference.name] = count
            logger.info('relationships.pass_complete', name=inference.name, type=inference.type, count=count)

        return counts, errors

    async def run_extractions(
        self,
        templates: CypherTemplates,
        synced_rows: dict[str, list[SyncedRow]],
        rules: dict[str, MappingRule],
        config_version: str,
    ) -> tuple[dict[str, int], list[str]]:
        """
        Apply mapping-rule extraction rules to the rows synced in this run.

        Args:
            templates: Templates holding the extraction statements
            synced_rows: Rows merged per label during entity sync
            rules: MappingRule per label
            config_version: Version stamped on created relationships

        Returns:
            (counts keyed by extraction template key, recorded errors)
        """
        counts: dict[str, int] = {}
        errors: list[str] = []

        for label, rule in rules.items():
            for extraction in rule.relationships:
                key = extraction_key(label, extraction)
                template = templates.extractions.get(key)
                if template is None:
                    continue
                total = 0
                for synced in synced_rows.get(label, []):
                    value = synced.row.get(extraction.match_field)
                    if value in (None, ''):
                        continue
                    params = build_relationship_params(template, synced.key, value, config_version)
                    try:
                        total += await self.repository.merge_extracted_relationship(template, params)
                    except Neo4jConnectionError:
                        raise
                    except Neo4jError as e:
                        errors.append(
                            str(PhaseError(
                                f'Extraction {key} failed for {synced.key}: {e.message}',
                                phase='relationship_extraction',
                            ))
                        )
                counts[key] = total
                logger.info('relationships.extraction_complete', key=key, count=total)

        return counts, errors
