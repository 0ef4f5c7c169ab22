from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PurchaseFrequencyBucket(BaseModel):
    """Response model for one price bucket of /purchase-frequency. Order is server-defined."""
    model_config = ConfigDict(frozen=True)

    range: str = Field(description="Server-defined price bucket label, e.g. '20001 - 30000'")
    count: int = Field(ge=0, description="Number of purchases in the bucket")
