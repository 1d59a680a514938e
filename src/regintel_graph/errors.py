"""
Custom exceptions and error handling for the RegIntel graph sync engine.

Provides:
- Typed exception hierarchy for different failure modes
- Error context preservation for debugging
- Translation of neo4j driver exceptions into the hierarchy

Propagation policy:
- Neo4jConnectionError is fatal for an invocation and always reaches the caller
- SchemaMismatchError is recoverable: the affected template is skipped
- PhaseError is recorded on the SyncResult and the run continues
"""

from typing import Any

from neo4j.exceptions import (
    AuthError,
    ConstraintError,
    ServiceUnavailable,
    SessionExpired,
)


class RegIntelGraphError(Exception):
    """Base exception for all graph sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(RegIntelGraphError):
    """Base class for client-related errors."""

    pass


class Neo4jError(ClientError):
    """Error from Neo4j database operations."""

    pass


class Neo4jConnectionError(Neo4jError):
    """Graph store unreachable, pool exhausted, or authentication failed."""

    pass


class Neo4jQueryError(Neo4jError):
    """Error executing a Cypher statement."""

    pass


class Neo4jConstraintError(Neo4jError):
    """Constraint violation in Neo4j (e.g., duplicate unique key)."""

    pass


class SourceViewError(ClientError):
    """Error reading a curated Postgres source view."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(RegIntelGraphError):
    """Base class for template and backfill errors."""

    pass


class ModelValidationError(PipelineError):
    """Graph model / mapping rule set failed structural validation at ingestion."""

    pass


class SchemaMismatchError(PipelineError):
    """A MappingRule references a NodeSpec or column that does not exist."""

    pass


class MalformedRowError(PipelineError):
    """A source row cannot be turned into template parameters."""

    pass


class TemplateError(PipelineError):
    """A generated template failed the structural safety check."""

    pass


class PhaseError(PipelineError):
    """Failure inside a single backfill phase."""

    def __init__(
        self,
        message: str,
        phase: str,
        context: dict[str, Any] | None = None,
    ):
        ctx = dict(context or {})
        ctx['phase'] = phase
        super().__init__(message, context=ctx)
        self.phase = phase


# =============================================================================
# Error Handling Utilities
# =============================================================================

_CONNECTION_MARKERS = (
    'connection',
    'connect',
    'unreachable',
    'acquisition',
    'failed to obtain',
    'unauthorized',
    'authentication',
)


def wrap_neo4j_error(exc: Exception, context: dict[str, Any] | None = None) -> Neo4jError:
    """
    Wrap a Neo4j exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed Neo4jError subclass
    """
    if isinstance(exc, Neo4jError):
        return exc

    error_str = str(exc).lower()
    ctx = dict(context or {})
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, (ServiceUnavailable, SessionExpired, AuthError)) or any(
        marker in error_str for marker in _CONNECTION_MARKERS
    ):
        return Neo4jConnectionError(
            f"Neo4j connection failed: {exc}",
            context=ctx,
        )
    elif isinstance(exc, ConstraintError) or 'constraint' in error_str or 'unique' in error_str:
        return Neo4jConstraintError(
            f"Neo4j constraint violation: {exc}",
            context=ctx,
        )
    else:
        return Neo4jQueryError(
            f"Neo4j query error: {exc}",
            context=ctx,
        )
