"""Concrete queries of the dashboard: cache keys plus bound fetchers."""
from __future__ import annotations

from typing import List, Optional

from purchase_dash.config import get_config
from purchase_dash.data.interface import DashboardApi
from purchase_dash.data.models import (
    Customer,
    CustomerPurchase,
    CustomersParams,
    DateRange,
    PurchaseFrequencyBucket,
)
from purchase_dash.inputs.date_range import to_wire_params

from .cache import QueryOptions, make_query_key

CUSTOMERS_SCOPE = "customers"
PURCHASE_FREQUENCY_SCOPE = "purchase-frequency"
CUSTOMER_PURCHASES_SCOPE = "customer-purchases"


def customers_key(params: Optional[CustomersParams] = None) -> str:
    params = params or CustomersParams()
    return make_query_key(CUSTOMERS_SCOPE, name=params.name or None, sortBy=params.sort_by)


def customers_query(api: DashboardApi, params: Optional[CustomersParams] = None) -> QueryOptions[List[Customer]]:
    params = params or CustomersParams()

    async def fetcher() -> List[Customer]:
        return await api.fetch_customers(params)

    return QueryOptions(key=customers_key(params), fetcher=fetcher)


def purchase_frequency_key(date_range: Optional[DateRange] = None) -> str:
    params = to_wire_params(date_range or DateRange())
    return make_query_key(PURCHASE_FREQUENCY_SCOPE, **{"from": params.from_, "to": params.to})


def purchase_frequency_query(
    api: DashboardApi, date_range: Optional[DateRange] = None
) -> QueryOptions[List[PurchaseFrequencyBucket]]:
    """Frequency query for a calendar-day range; bounds go out as ISO instants."""
    date_range = date_range or DateRange()
    params = to_wire_params(date_range)

    async def fetcher() -> List[PurchaseFrequencyBucket]:
        return await api.fetch_purchase_frequency(params)

    return QueryOptions(key=purchase_frequency_key(date_range), fetcher=fetcher)


def customer_purchases_key(customer_id: Optional[int]) -> str:
    return make_query_key(CUSTOMER_PURCHASES_SCOPE, customerId=customer_id)


def customer_purchases_query(
    api: DashboardApi,
    customer_id: Optional[int],
    first_fetch_delay: Optional[float] = None,
) -> QueryOptions[List[CustomerPurchase]]:
    """Purchase history of one customer; disabled until a customer is selected.

    The first load of each customer is held back by `first_fetch_delay` seconds
    so the detail panel shows its loading skeleton.
    """
    if first_fetch_delay is None:
        first_fetch_delay = get_config().first_fetch_delay_ms / 1000.0

    async def fetcher() -> List[CustomerPurchase]:
        return await api.fetch_customer_purchases(customer_id)

    return QueryOptions(
        key=customer_purchases_key(customer_id),
        fetcher=fetcher,
        enabled=bool(customer_id),
        first_fetch_delay=first_fetch_delay,
    )
