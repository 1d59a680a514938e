"""
External service clients for the RegIntel graph sync engine.
"""

from .neo4j_client import Neo4jClient, WriteOutcome
from .postgres_client import PostgresClient

__all__ = [
    'Neo4jClient',
    'WriteOutcome',
    'PostgresClient',
]
