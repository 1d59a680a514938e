"""
Small helpers shared by the sync pipeline.

uuid7() wraps fastuuid.uuid7() to return a stdlib uuid.UUID instance.
fastuuid.UUID is a Rust-backed type that is NOT isinstance-compatible with
uuid.UUID, so we roundtrip through the string representation.
"""

from uuid import UUID

import fastuuid


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def new_run_id() -> str:
    """Identifier for one backfill run; sorts by start time."""
    return str(uuid7())
