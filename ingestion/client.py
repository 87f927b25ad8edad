"""
Magento REST client with bearer authentication and rate limiting.

This module provides:
- Magento ``searchCriteria`` query building (paging, sorting, filters)
- Mapping of HTTP and transport failures onto the exception hierarchy
- Admission of every request through one shared RateLimitedFetcher

The client never retries. Transient failures surface as ``NetworkError`` /
``RateLimitError`` and the calling stage decides what to do with them.
"""

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from core.config import Settings
from core.exceptions import (
    APIRequestError,
    AuthenticationError,
    ConfigurationError,
    DataShapeError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
)
from ingestion.rate_limiter import RateLimitedFetcher
from models.entity import Customer, Page, Shipment, Transaction

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

ORDERS_PATH = "/rest/V1/orders"
CUSTOMERS_SEARCH_PATH = "/rest/V1/customers/search"
CUSTOMER_PATH = "/rest/V1/customers/{customer_id}"
TRANSACTIONS_PATH = "/rest/V1/transactions"
SHIPMENTS_PATH = "/rest/V1/shipments"


def search_criteria(
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    sort_field: Optional[str] = None,
    direction: str = "DESC",
    filters: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """
    Build flat ``searchCriteria[...]`` query parameters.

    Each filter is ``{"field", "value", "condition_type"}`` and goes into
    its own filter group, so filters are ANDed.
    """
    params: Dict[str, Any] = {}
    if page is not None:
        params["searchCriteria[currentPage]"] = page
    if page_size is not None:
        params["searchCriteria[pageSize]"] = page_size
    if sort_field:
        params["searchCriteria[sortOrders][0][field]"] = sort_field
        params["searchCriteria[sortOrders][0][direction]"] = direction

    for index, flt in enumerate(filters or []):
        prefix = f"searchCriteria[filter_groups][{index}][filters][0]"
        params[f"{prefix}[field]"] = flt["field"]
        params[f"{prefix}[value]"] = flt["value"]
        params[f"{prefix}[condition_type]"] = flt.get("condition_type", "eq")

    return params


def _created_from_filter(created_from: Optional[str]) -> List[Dict[str, Any]]:
    if not created_from:
        return []
    return [{"field": "created_at", "value": created_from, "condition_type": "gteq"}]


class MagentoClient:
    """
    Async client for the Magento 2 REST API.

    Attributes:
        base_url: Store base URL (``MAGENTO_BASE_URL``)
        fetcher: Rate limiter every request goes through
        timeout: Transport timeout in seconds
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Optional[RateLimitedFetcher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not settings.MAGENTO_BASE_URL:
            raise ConfigurationError("MAGENTO_BASE_URL is not set")
        if not settings.MAGENTO_ACCESS_TOKEN:
            raise ConfigurationError("MAGENTO_ACCESS_TOKEN is not set")

        self.base_url = settings.MAGENTO_BASE_URL.rstrip("/")
        self.timeout = settings.REQUEST_TIMEOUT
        self.fetcher = fetcher or RateLimitedFetcher(settings.REQUESTS_PER_SECOND)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {settings.MAGENTO_ACCESS_TOKEN}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "MagentoClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.fetcher.fetch(lambda: self._request(path, params))

    async def _request(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        """
        Issue one GET and decode the JSON body.

        Raises:
            AuthenticationError: 401 / 403
            ResourceNotFoundError: 404
            RateLimitError: 429
            NetworkError: 5xx, timeouts and connection failures
            APIRequestError: Any other failure, including undecodable JSON
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timeout for {url}",
                context={"api_url": url, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error for {url}",
                context={"api_url": url},
                original_exception=e
            )

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {url}",
                context={"status_code": status, "api_url": url}
            )

        if status == 404:
            raise ResourceNotFoundError(
                f"Resource not found: {url}",
                context={"status_code": 404, "api_url": url}
            )

        if status == 429:
            retry_after = None
            header = response.headers.get("Retry-After")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    logger.debug(f"Ignoring non-numeric Retry-After header: {header}")
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                context={"status_code": 429, "api_url": url},
                retry_after=retry_after
            )

        if status >= 500:
            raise NetworkError(
                f"Server error {status} for {url}",
                context={
                    "status_code": status,
                    "api_url": url,
                    "response_body": response.text[:500]  # Truncate
                }
            )

        if status >= 400:
            raise APIRequestError(
                f"Request rejected with status {status}: {url}",
                context={
                    "status_code": status,
                    "api_url": url,
                    "response_body": response.text[:500]
                }
            )

        try:
            return response.json()
        except ValueError as e:
            raise APIRequestError(
                "Failed to parse JSON response",
                context={"api_url": url, "response_body": response.text[:500]},
                original_exception=e
            )

    @staticmethod
    def _parse(model: Type[M], data: Any, path: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DataShapeError(
                f"Unexpected response shape from {path}",
                context={"api_url": path, "field_errors": e.errors(include_url=False)},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def get_orders(
        self,
        page: int,
        page_size: int,
        created_from: Optional[str] = None
    ) -> Page:
        """One page of orders, newest identifier first."""
        params = search_criteria(
            page=page,
            page_size=page_size,
            sort_field="entity_id",
            direction="DESC",
            filters=_created_from_filter(created_from),
        )
        data = await self._get(ORDERS_PATH, params)
        return self._parse(Page, data, ORDERS_PATH)

    async def get_customers(
        self,
        page: int,
        page_size: int,
        created_from: Optional[str] = None
    ) -> Page:
        """One page of customers, oldest identifier first."""
        params = search_criteria(
            page=page,
            page_size=page_size,
            sort_field="entity_id",
            direction="ASC",
            filters=_created_from_filter(created_from),
        )
        data = await self._get(CUSTOMERS_SEARCH_PATH, params)
        return self._parse(Page, data, CUSTOMERS_SEARCH_PATH)

    # ------------------------------------------------------------------
    # Single entities and dependent resources
    # ------------------------------------------------------------------

    async def get_customer(self, customer_id: int) -> Customer:
        path = CUSTOMER_PATH.format(customer_id=customer_id)
        data = await self._get(path)
        return self._parse(Customer, data, path)

    async def get_order_transactions(self, order_id: int) -> List[Transaction]:
        params = search_criteria(
            filters=[{"field": "order_id", "value": order_id, "condition_type": "eq"}]
        )
        data = await self._get(TRANSACTIONS_PATH, params)
        page = self._parse(Page, data, TRANSACTIONS_PATH)
        return [self._parse(Transaction, item, TRANSACTIONS_PATH) for item in page.items]

    async def get_order_shipments(self, order_id: int) -> List[Shipment]:
        params = search_criteria(
            filters=[{"field": "order_id", "value": order_id, "condition_type": "eq"}]
        )
        data = await self._get(SHIPMENTS_PATH, params)
        page = self._parse(Page, data, SHIPMENTS_PATH)
        return [self._parse(Shipment, item, SHIPMENTS_PATH) for item in page.items]
