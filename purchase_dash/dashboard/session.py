"""Non-visual state of the dashboard page.

A DashboardSession owns the FilterState and wires user input through the
debouncer and the date-range picker into query observers. Views read the
composed properties and re-render when `on_update` fires.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, List, Optional

import pandas as pd

from purchase_dash.data.interface import DashboardApi
from purchase_dash.data.models import Customer, CustomerPurchase, FilterState, PurchaseFrequencyBucket, SortField
from purchase_dash.inputs.date_range import DateRangePicker, DateRangeValidation, date_range_label
from purchase_dash.inputs.debounce import Debouncer
from purchase_dash.logging import get_logger
from purchase_dash.query.cache import QueryCache, QueryObserver, QueryResult
from purchase_dash.query.queries import customer_purchases_query, customers_query, purchase_frequency_query
from purchase_dash.view.composers import (
    SortState,
    compose_customers_params,
    customer_count_label,
    customer_table_frame,
    empty_customers_message,
    frequency_chart_frame,
    purchase_rows,
    sort_customers,
    toggle_sort,
    total_purchase_count,
)


class DashboardSession:
    """One user's dashboard: customer table, price-frequency chart and detail panel.

    Must be created and used inside a running event loop.
    """

    def __init__(
        self,
        api: DashboardApi,
        cache: Optional[QueryCache] = None,
        debounce_ms: Optional[int] = None,
        first_fetch_delay: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
        on_update: Optional[Callable[[], None]] = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self._api = api
        self._cache = cache or QueryCache()
        self._first_fetch_delay = first_fetch_delay
        self._on_update = on_update
        self._closed = False

        self.filters = FilterState()
        self.date_range_error: Optional[str] = None
        self.selected_customer: Optional[Customer] = None

        self._search = Debouncer(self.filters.search_term, delay_ms=debounce_ms, on_settle=self._on_search_settled)
        self.picker = DateRangePicker(self.filters.date_range, on_change=self._on_date_range, today=today)

        self._customers: QueryObserver[List[Customer]] = QueryObserver(
            self._cache, self._customers_options(), on_change=self._changed
        )
        self._frequency: QueryObserver[List[PurchaseFrequencyBucket]] = QueryObserver(
            self._cache, purchase_frequency_query(api, self.filters.date_range), on_change=self._changed
        )
        self._purchases: QueryObserver[List[CustomerPurchase]] = QueryObserver(
            self._cache, self._purchases_options(None), on_change=self._changed
        )

    # ---------- setters ----------

    def set_search_term(self, term: str) -> None:
        self.filters = self.filters.model_copy(update={"search_term": term})
        self._search.push(term)
        self._changed()

    def flush_search(self) -> None:
        self._search.flush()

    def toggle_sort(self, field: SortField) -> None:
        sort = toggle_sort(self.sort_state, field)
        self.filters = self.filters.model_copy(update={"sort_field": sort.field, "sort_order": sort.order})
        previous_key = self._customers.key
        self._customers.set_options(self._customers_options())
        if self._customers.key == previous_key:
            # Id sort is applied locally, the observer has nothing new to report
            self._changed()

    def select_customer(self, customer: Optional[Customer]) -> None:
        self.selected_customer = customer
        self._purchases.set_options(self._purchases_options(customer.id if customer else None))

    def close_customer(self) -> None:
        self.select_customer(None)

    # ---------- derived state ----------

    @property
    def debounced_search_term(self) -> str:
        return self._search.value

    @property
    def sort_state(self) -> SortState:
        return SortState(self.filters.sort_field, self.filters.sort_order)

    @property
    def customers(self) -> QueryResult[List[Customer]]:
        return self._customers.result

    @property
    def customer_rows(self) -> List[Customer]:
        return sort_customers(self.customers.data, self.sort_state)

    def customers_frame(self) -> pd.DataFrame:
        return customer_table_frame(self.customer_rows)

    @property
    def customer_count_text(self) -> str:
        return customer_count_label(self.customer_rows)

    @property
    def customers_empty_message(self) -> str:
        return empty_customers_message(self.debounced_search_term)

    @property
    def frequency(self) -> QueryResult[List[PurchaseFrequencyBucket]]:
        return self._frequency.result

    def chart_frame(self) -> pd.DataFrame:
        return frequency_chart_frame(self.frequency.data)

    @property
    def total_purchases(self) -> int:
        return total_purchase_count(self.frequency.data)

    @property
    def date_range_text(self) -> str:
        return date_range_label(self.filters.date_range, self.picker.placeholder)

    @property
    def picker_disabled(self) -> bool:
        """The range picker is locked while the chart has no data to show yet."""
        return self.frequency.is_loading

    @property
    def purchases(self) -> QueryResult[List[CustomerPurchase]]:
        return self._purchases.result

    def purchase_rows(self) -> List[dict]:
        return purchase_rows(self.purchases.data)

    # ---------- lifecycle ----------

    async def settle(self) -> None:
        """Wait until none of the session's queries has a request in flight."""
        for observer in (self._customers, self._frequency, self._purchases):
            await observer.wait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._search.close()
        for observer in (self._customers, self._frequency, self._purchases):
            observer.destroy()

    # ---------- wiring ----------

    def _customers_options(self):
        params = compose_customers_params(self._search.value, self.sort_state)
        return customers_query(self._api, params)

    def _purchases_options(self, customer_id: Optional[int]):
        return customer_purchases_query(self._api, customer_id, first_fetch_delay=self._first_fetch_delay)

    def _on_search_settled(self, term: str) -> None:
        self.logger.debug(f"Search settled on {term!r}")
        self._customers.set_options(self._customers_options())

    def _on_date_range(self, result: DateRangeValidation) -> None:
        if not result.is_valid:
            self.date_range_error = result.error
            self._changed()
            return
        self.date_range_error = None
        self.filters = self.filters.model_copy(update={"date_range": result.range})
        self._frequency.set_options(purchase_frequency_query(self._api, result.range))

    def _changed(self, _result: Optional[QueryResult] = None) -> None:
        if not self._closed and self._on_update is not None:
            self._on_update()
