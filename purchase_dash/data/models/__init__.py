from .data_filters import (
    SortField,
    SortOrder,
    DateRange,
    FilterState,
    CustomersParams,
    PurchaseFrequencyParams,
)

from .customers import Customer, CustomerPurchase
from .purchase_frequency import PurchaseFrequencyBucket

__all__ = [
    # Filter classes
    "SortField",
    "SortOrder",
    "DateRange",
    "FilterState",
    "CustomersParams",
    "PurchaseFrequencyParams",
    # Response models
    "Customer",
    "CustomerPurchase",
    "PurchaseFrequencyBucket",
]
