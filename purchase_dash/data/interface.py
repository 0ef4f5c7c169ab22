from __future__ import annotations

from typing import List, Optional, Protocol

from .models import (
    # Filter classes
    CustomersParams,
    PurchaseFrequencyParams,
    # Response models
    Customer,
    CustomerPurchase,
    PurchaseFrequencyBucket,
)


# ---- Dashboard API protocol ----

class DashboardApi(Protocol):
    """
    Backend-agnostic contract consumed by the query layer.

    Every method is a coroutine that either returns validated models or raises:
    - RequestError for transport and server failures,
    - PreconditionError for missing required inputs (before any network call).
    Caching lives in the query layer; implementations never cache.
    """

    async def fetch_customers(self, params: Optional[CustomersParams] = None) -> List[Customer]:
        """List customers, optionally filtered by name and sorted by total amount."""
        ...

    async def fetch_purchase_frequency(
        self, params: Optional[PurchaseFrequencyParams] = None
    ) -> List[PurchaseFrequencyBucket]:
        """Purchase counts per price bucket, optionally within a date range."""
        ...

    async def fetch_customer_purchases(self, customer_id: Optional[int]) -> List[CustomerPurchase]:
        """Purchase history of one customer."""
        ...
