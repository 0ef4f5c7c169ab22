from __future__ import annotations

import asyncio
import threading
from typing import Any, List, Mapping, Optional, Type, TypeVar
from urllib.parse import urlencode

import requests
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from purchase_dash.config import get_config
from purchase_dash.errors import PreconditionError, RequestError
from purchase_dash.logging import get_logger

from ..interface import DashboardApi
from ..models import (
    Customer,
    CustomerPurchase,
    CustomersParams,
    PurchaseFrequencyBucket,
    PurchaseFrequencyParams,
)

CUSTOMERS_ENDPOINT = "/customers"
PURCHASE_FREQUENCY_ENDPOINT = "/purchase-frequency"
CUSTOMER_PURCHASES_ENDPOINT = "/customers/{customer_id}/purchases"

ModelT = TypeVar("ModelT", bound=BaseModel)


class HttpDashboardApi(DashboardApi):
    """
    REST-backed implementation.
    - One requests.Session per instance; the blocking GET runs in a worker thread
      so the event loop only suspends at the network boundary.
    - requests.Session is not thread-safe, so worker threads take turns on it.
    - Every failure surfaces as RequestError (or PreconditionError before the call).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        config = get_config()
        self.base_url = (base_url or config.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.request_timeout_seconds
        self._session = session or requests.Session()
        self._session_lock = threading.Lock()
        self.logger = get_logger(__name__)

    # ---------- url helpers ----------

    @staticmethod
    def build_query(params: Optional[Mapping[str, Any]]) -> str:
        """Percent-encode params, dropping None and empty values entirely."""
        if not params:
            return ""
        pairs = [(key, value) for key, value in params.items() if value is not None and value != ""]
        return urlencode(pairs)

    def build_url(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
        query = self.build_query(params)
        url = f"{self.base_url}{endpoint}"
        return f"{url}?{query}" if query else url

    # ---------- transport ----------

    async def call(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET `endpoint` and return the decoded JSON body."""
        url = self.build_url(endpoint, params)
        return await asyncio.to_thread(self._get_json, url)

    def _get_json(self, url: str) -> Any:
        self.logger.debug(f"GET {url}")
        try:
            with self._session_lock:
                response = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.warning(f"Transport failure for {url}: {e}")
            raise RequestError(str(e)) from e

        if not response.ok:
            message = self._error_message(response)
            self.logger.warning(f"GET {url} failed with {response.status_code}: {message}")
            raise RequestError(message, status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise RequestError(f"Invalid JSON in response from {url}", status=response.status_code) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {response.status_code}: {response.reason}"

    @staticmethod
    def _parse_rows(model: Type[ModelT], payload: Any, endpoint: str) -> List[ModelT]:
        if not isinstance(payload, list):
            raise RequestError(f"Expected a list from {endpoint}, got {type(payload).__name__}")
        try:
            return [model.model_validate(row) for row in payload]
        except SchemaValidationError as e:
            raise RequestError(f"Malformed {model.__name__} data from {endpoint}: {e.error_count()} invalid field(s)") from e

    # ---------- interface implementation ----------

    async def fetch_customers(self, params: Optional[CustomersParams] = None) -> List[Customer]:
        query = params.model_dump(by_alias=True, exclude_none=True) if params else None
        payload = await self.call(CUSTOMERS_ENDPOINT, query)
        return self._parse_rows(Customer, payload, CUSTOMERS_ENDPOINT)

    async def fetch_purchase_frequency(
        self, params: Optional[PurchaseFrequencyParams] = None
    ) -> List[PurchaseFrequencyBucket]:
        query = params.model_dump(by_alias=True, exclude_none=True) if params else None
        payload = await self.call(PURCHASE_FREQUENCY_ENDPOINT, query)
        return self._parse_rows(PurchaseFrequencyBucket, payload, PURCHASE_FREQUENCY_ENDPOINT)

    async def fetch_customer_purchases(self, customer_id: Optional[int]) -> List[CustomerPurchase]:
        if customer_id is None:
            raise PreconditionError("Customer ID is required")
        endpoint = CUSTOMER_PURCHASES_ENDPOINT.format(customer_id=customer_id)
        payload = await self.call(endpoint)
        return self._parse_rows(CustomerPurchase, payload, endpoint)
