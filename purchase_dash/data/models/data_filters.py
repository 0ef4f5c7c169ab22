from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SortField = Literal["id", "totalAmount"]
SortOrder = Literal["asc", "desc"]


class DateRange(BaseModel):
    """Calendar-day date range picked in the UI. Either bound may be empty."""
    model_config = ConfigDict(frozen=True)

    start_date: Optional[date] = Field(default=None, description="First day of the range (inclusive)")
    end_date: Optional[date] = Field(default=None, description="Last day of the range (inclusive)")

    @property
    def is_empty(self) -> bool:
        return self.start_date is None and self.end_date is None


class FilterState(BaseModel):
    """Filters owned by one dashboard session. Replaced, never mutated in place."""
    model_config = ConfigDict(frozen=True)

    search_term: str = Field(default="", description="Raw customer name search text")
    sort_field: SortField = Field(default="id", description="Column the customer table is sorted by")
    sort_order: SortOrder = Field(default="asc", description="Sort direction")
    date_range: DateRange = Field(default_factory=DateRange, description="Purchase frequency date range")


class CustomersParams(BaseModel):
    """Query parameters for /customers."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sort_by: Optional[SortOrder] = Field(default=None, alias="sortBy", description="Sort by total amount, server side")
    name: Optional[str] = Field(default=None, description="Customer name substring filter")


class PurchaseFrequencyParams(BaseModel):
    """Query parameters for /purchase-frequency (ISO-8601 instants)."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_: Optional[str] = Field(default=None, alias="from", description="Range start instant")
    to: Optional[str] = Field(default=None, description="Range end instant")
