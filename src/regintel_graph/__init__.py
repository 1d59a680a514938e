"""
RegIntel Graph Sync

Approval-gated synchronization of curated regulatory records from Postgres
views into an environment-isolated Neo4j graph, with Cypher template
generation and invariant validation.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    BackfillPipeline,
    SyncResult,
    run_backfill,
)
from .cypher_templates import (
    generate_templates,
    render_template,
    validate_template,
)
from .validation import GraphValidator, ValidationReport, run_validation
from .repository import GraphRepository
from .models import Environment, GraphConfig, load_graph_config
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PhaseTimer,
)
from .errors import (
    RegIntelGraphError,
    PipelineError,
    PhaseError,
    SchemaMismatchError,
    ModelValidationError,
    Neo4jError,
    Neo4jConnectionError,
    SourceViewError,
)

__all__ = [
    # Version
    '__version__',
    # Backfill
    'BackfillPipeline',
    'SyncResult',
    'run_backfill',
    # Templates
    'generate_templates',
    'render_template',
    'validate_template',
    # Validation
    'GraphValidator',
    'ValidationReport',
    'run_validation',
    # Repository
    'GraphRepository',
    # Models
    'Environment',
    'GraphConfig',
    'load_graph_config',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PhaseTimer',
    # Errors
    'RegIntelGraphError',
    'PipelineError',
    'PhaseError',
    'SchemaMismatchError',
    'ModelValidationError',
    'Neo4jError',
    'Neo4jConnectionError',
    'SourceViewError',
]
