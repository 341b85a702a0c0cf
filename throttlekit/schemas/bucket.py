"""Pydantic schema for the leaky-bucket counter record."""

from __future__ import annotations

from pydantic import BaseModel, Field


class BucketState(BaseModel):
    """Stored state of a leaky bucket.

    The level is kept as a real number so slow drip rates don't truncate.
    """

    level: float = Field(
        ..., ge=0, description="Bucket level at last_update, before decay."
    )
    last_update: float = Field(
        ..., description="UNIX time in seconds when the level was written."
    )
