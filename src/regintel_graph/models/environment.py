"""
Target environments and label prefixing.

STAGING and PRODUCTION share one physical graph store; every staging label
carries a prefix (``_stg_Drug``) so the two datasets stay disjoint.

Two ways of applying the prefix:
- ``prefixed_label`` composes a label directly when a statement is built.
  The template engine and the backfill pipeline always use this.
- ``add_label_prefix`` rewrites the text of a caller-supplied, environment-
  agnostic query. It skips quoted string literals and relationship patterns
  (``-[r:TYPE]->``) but is still a textual rewrite: a backtick-quoted label
  or a label spelled inside a string literal is not recognised.
"""

import re
from enum import Enum

from ..config import get_settings


class Environment(str, Enum):
    """Target graph environment."""

    STAGING = 'STAGING'
    PRODUCTION = 'PRODUCTION'


def label_prefix(
    environment: Environment | str,
    prefixes: dict[Environment, str] | None = None,
) -> str:
    """
    Resolve the label prefix for an environment.

    Args:
        environment: Target environment
        prefixes: Optional prefix table override (defaults to settings)

    Returns:
        The label prefix (empty string for PRODUCTION by default)
    """
    env = Environment(environment)
    if prefixes is not None:
        return prefixes.get(env, '')

    settings = get_settings()
    if env is Environment.STAGING:
        return settings.GRAPH_STAGING_LABEL_PREFIX
    return settings.GRAPH_PRODUCTION_LABEL_PREFIX


def prefixed_label(label: str, prefix: str) -> str:
    """Prepend ``prefix`` to ``label`` unless it is already there."""
    if not prefix or label.startswith(prefix):
        return label
    return f'{prefix}{label}'


def strip_label_prefix(label: str, prefix: str) -> str:
    """Remove ``prefix`` from ``label`` if present."""
    if prefix and label.startswith(prefix):
        return label[len(prefix):]
    return label


# Alternation order matters: literals and relationship brackets are consumed
# whole so their contents are never treated as labels. Only brackets opened
# right after `-` (which covers `<-[`) are relationship patterns; list
# comprehensions and other `[...]` expressions are rewritten like the rest.
_REWRITE_PATTERN = re.compile(
    r"""
    (?P<single>'(?:[^'\\]|\\.)*')
    | (?P<double>"(?:[^"\\]|\\.)*")
    | (?P<rel>-\s*\[[^\[\]]*\])
    | :(?P<label>[A-Z][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)


def add_label_prefix(query: str, prefix: str) -> str:
    """
    Rewrite every node label in ``query`` to carry ``prefix``.

    A label is a ``:`` followed by a capitalised identifier. Labels already
    carrying the prefix are left alone, so the rewrite is a fixed point
    after one application.

    Args:
        query: Environment-agnostic Cypher text
        prefix: Label prefix for the target environment

    Returns:
        Rewritten query (unchanged when prefix is empty)
    """
    if not prefix:
        return query

    def _replace(match: re.Match[str]) -> str:
        label = match.group('label')
        if label is None or label.startswith(prefix):
            return match.group(0)
        return f':{prefix}{label}'

    return _REWRITE_PATTERN.sub(_replace, query)


def scope_predicate(
    variable: str,
    environment: Environment | str,
    prefixes: dict[Environment, str] | None = None,
) -> tuple[str, dict[str, str]]:
    """
    Build a WHERE fragment restricting ``variable`` to one environment.

    STAGING nodes are those with at least one label carrying the staging
    prefix; PRODUCTION nodes are those with none.

    Returns:
        (cypher fragment, parameters)
    """
    env = Environment(environment)
    staging_prefix = label_prefix(Environment.STAGING, prefixes)
    production_prefix = label_prefix(Environment.PRODUCTION, prefixes)

    if env is Environment.STAGING:
        return (
            f'any(lbl IN labels({variable}) WHERE lbl STARTS WITH $scope_prefix)',
            {'scope_prefix': staging_prefix},
        )
    if production_prefix:
        return (
            f'any(lbl IN labels({variable}) WHERE lbl STARTS WITH $scope_prefix)',
            {'scope_prefix': production_prefix},
        )
    return (
        f'none(lbl IN labels({variable}) WHERE lbl STARTS WITH $scope_prefix)',
        {'scope_prefix': staging_prefix},
    )
