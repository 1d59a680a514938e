"""
Pytest configuration and shared fixtures.

Key fixtures:
- neo4j_credentials: Neo4j credentials dict (skips live tests when unset)
- staging_prefix: Unique staging label prefix isolating one live test
- drug_rows / decision_rows: Curated view rows used by the sync scenarios

NOTE: Live tests create their own Neo4j client instances and write only
under a throwaway staging prefix, which they delete afterwards.
"""

import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)


@pytest.fixture
def neo4j_credentials() -> dict[str, str]:
    """Get Neo4j credentials from environment."""
    uri = os.getenv('NEO4J_URI')
    password = os.getenv('NEO4J_PASSWORD')
    if not uri or not password:
        pytest.skip('NEO4J_URI or NEO4J_PASSWORD not set')
    return {
        'uri': uri,
        'username': os.getenv('NEO4J_USERNAME', 'neo4j'),
        'password': password,
        'database': os.getenv('NEO4J_DATABASE', 'neo4j'),
    }


@pytest.fixture
def staging_prefix() -> str:
    """Label prefix unique to one test, e.g. '_t3f9a1c2_'."""
    return f'_t{uuid.uuid4().hex[:8]}_'


@pytest.fixture
def approved_at() -> datetime:
    return datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def drug_rows(approved_at: datetime) -> list[dict[str, Any]]:
    """Three vw_approved_drugs rows."""
    base = {
        'approved_date': datetime(2025, 11, 4, tzinfo=timezone.utc),
        'biomarkers': '',
        'url': 'https://www.ema.europa.eu/en/medicines',
        'sourceDomain': 'ema.europa.eu',
        'approved_by': 'reviewer-7',
        'approved_at': approved_at,
    }
    return [
        {**base, 'drug_id': 'drug-001', 'drug_name': 'Keytruda', 'therapeutic_area': 'Oncology'},
        {**base, 'drug_id': 'drug-002', 'drug_name': 'Ozempic', 'therapeutic_area': 'Endocrinology'},
        {**base, 'drug_id': 'drug-003', 'drug_name': 'Leqembi', 'therapeutic_area': 'Neurology'},
    ]


@pytest.fixture
def decision_rows(approved_at: datetime) -> list[dict[str, Any]]:
    """Two vw_approved_decisions rows; only the first names a known drug."""
    base = {
        'decision_date': datetime(2026, 1, 15, tzinfo=timezone.utc),
        'agency': 'EMA',
        'agency_domain': 'ema.europa.eu',
        'url': 'https://www.ema.europa.eu/en/news',
        'approved_by': 'reviewer-7',
        'approved_at': approved_at,
    }
    return [
        {
            **base,
            'decision_id': 'dec-001',
            'title': 'CHMP recommends extension of indication for Keytruda',
            'decision_type': 'APPROVAL',
            'drug_name_raw': 'Keytruda (pembrolizumab)',
        },
        {
            **base,
            'decision_id': 'dec-002',
            'title': 'Refusal of marketing authorisation for Examplumab',
            'decision_type': 'REFUSAL',
            'drug_name_raw': 'Examplumab',
        },
    ]
