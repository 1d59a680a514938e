"""
Backfill pipeline: entity sync, derived nodes, re-classification and relationship inference.
"""

from .backfill import BackfillPipeline, SyncResult, run_backfill
from .entity_sync import EntitySyncer, EntitySyncResult, SyncedRow
from .reclassifier import SafetyAlertReclassifier
from .reference_nodes import PhaseOutcome, ReferenceNodeBuilder
from .relationships import INFERENCE_PASSES, InferencePass, RelationshipInferrer

__all__ = [
    # Orchestrator
    'BackfillPipeline',
    'SyncResult',
    'run_backfill',
    # Phases
    'EntitySyncer',
    'EntitySyncResult',
    'SyncedRow',
    'ReferenceNodeBuilder',
    'PhaseOutcome',
    'SafetyAlertReclassifier',
    'RelationshipInferrer',
    'InferencePass',
    'INFERENCE_PASSES',
]
