"""Pure functions turning server rows into what the table and chart widgets draw."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from purchase_dash.data.models import (
    Customer,
    CustomerPurchase,
    CustomersParams,
    PurchaseFrequencyBucket,
    SortField,
    SortOrder,
)
from purchase_dash.inputs.date_range import format_display_date

RANGE_LABEL = re.compile(r"(\d+)\s*-\s*(\d+)")

CUSTOMER_COLUMNS = ["id", "name", "count", "total_amount", "count_text", "total_amount_text"]
CHART_COLUMNS = ["range", "count"]


# ---- Sorting ----

@dataclass(frozen=True)
class SortState:
    field: SortField = "id"
    order: SortOrder = "asc"


def toggle_sort(state: SortState, field: SortField) -> SortState:
    """Same field flips the direction; a new field starts ascending."""
    if state.field == field:
        return SortState(field, "desc" if state.order == "asc" else "asc")
    return SortState(field, "asc")


def compose_customers_params(search_term: str, sort: SortState) -> CustomersParams:
    """Only the total-amount sort goes to the server; id sorting stays local."""
    return CustomersParams(
        name=search_term or None,
        sort_by=sort.order if sort.field == "totalAmount" else None,
    )


def sort_customers(customers: Optional[Sequence[Customer]], sort: SortState) -> List[Customer]:
    if not customers:
        return []
    if sort.field == "id":
        # sorted() is stable
        return sorted(customers, key=lambda customer: customer.id, reverse=sort.order == "desc")
    # Already ordered by the server
    return list(customers)


def format_purchase_count(count: int) -> str:
    return f"{count:,}회"


def customer_table_frame(customers: Sequence[Customer]) -> pd.DataFrame:
    """Raw values for sorting plus the display strings the table shows."""
    rows = [
        {
            **customer.model_dump(),
            "count_text": format_purchase_count(customer.count),
            "total_amount_text": format_won(customer.total_amount),
        }
        for customer in customers
    ]
    return pd.DataFrame(rows, columns=CUSTOMER_COLUMNS)


def customer_count_label(customers: Optional[Sequence[Customer]]) -> str:
    return f"총 {len(customers or ()):,}명의 고객"


def empty_customers_message(search_term: str) -> str:
    if search_term:
        return f'No customers match "{search_term}"'
    return "No customers registered"


# ---- Price ranges ----

def parse_range_label(label: str) -> Optional[Tuple[int, int]]:
    match = RANGE_LABEL.search(label)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def smooth_lower_bound(low: int) -> int:
    """20001 -> 20000: the server's exclusive lower bound, shown as a round number."""
    if low > 0 and (low % 10000 == 1 or low % 1000 == 1):
        return low - 1
    return low


def _group_digits(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}".rstrip("0").rstrip(".")


def format_price(price: float) -> str:
    """Korean won with 만 (10,000) units: 0원, 5,000원, 2만원, 2.5만원."""
    if price == 0:
        return "0원"
    if price >= 10000:
        man_won = price / 10000
        if float(man_won).is_integer():
            return f"{int(man_won)}만원"
        return f"{man_won:.1f}만원"
    return f"{_group_digits(price)}원"


def format_range_label(label: str) -> str:
    bounds = parse_range_label(label)
    if bounds is None:
        return label
    low, high = bounds
    return f"{format_price(smooth_lower_bound(low))} ~ {format_price(high)}"


def frequency_chart_frame(buckets: Optional[Sequence[PurchaseFrequencyBucket]]) -> pd.DataFrame:
    """Chart rows in server order, with display labels."""
    rows = [{"range": format_range_label(bucket.range), "count": bucket.count} for bucket in buckets or ()]
    return pd.DataFrame(rows, columns=CHART_COLUMNS)


def total_purchase_count(buckets: Optional[Sequence[PurchaseFrequencyBucket]]) -> int:
    return sum(bucket.count for bucket in buckets or ())


# ---- Customer detail ----

def format_purchase_date(value: str) -> str:
    return format_display_date(date.fromisoformat(value[:10]))


def format_won(price: float) -> str:
    return f"{_group_digits(price)}원"


def purchase_rows(purchases: Optional[Sequence[CustomerPurchase]]) -> List[dict]:
    return [
        {
            "date": format_purchase_date(purchase.date),
            "product": purchase.product,
            "price": format_won(purchase.price),
            "img_src": purchase.img_src,
        }
        for purchase in purchases or ()
    ]
