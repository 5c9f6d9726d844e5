"""Record allocation boundary.

Allocating record ordinals (and keeping them unique per distribution) is
the job of an external service, e.g. a counter table in the database that
owns the shard. This module only describes that collaborator and turns
what it hands back into a validated key.
"""
from __future__ import annotations

from typing import Protocol

from shardkey.core.composite_key import CompositeKey, validate_distribution


class RecordAllocator(Protocol):
    def allocate_record(self, distribution: int) -> int:
        """Return the next unused record ordinal for distribution."""
        ...


def mint_key(allocator: RecordAllocator, distribution: int) -> CompositeKey:
    """Ask allocator for a record and build the key for it.

    The distribution is checked before the allocator is called, so a bad
    shard tag never consumes an ordinal. An out-of-range record from the
    allocator raises OutOfRangeError.
    """
    validate_distribution(distribution)
    record = allocator.allocate_record(distribution)
    return CompositeKey(distribution=distribution, record=record)
