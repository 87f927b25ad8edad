"""
Pytest configuration and fixtures
"""

import pytest
from typing import Any, Dict, List, Optional

from core.config import Settings
from core.exceptions import NetworkError, ResourceNotFoundError
from ingestion.checkpoint import (
    DOWNLOAD_CHECKPOINT_FILE,
    PROCESS_CHECKPOINT_FILE,
    CheckpointStore,
)
from ingestion.store import DurableUnitStore
from models.checkpoint import DownloadCheckpoint, ProcessCheckpoint
from models.entity import Customer, Page, Shipment, Transaction


class FakeMagentoClient:
    """
    In-memory stand-in for MagentoClient.

    Records are served in the order given, ``page_size`` at a time.
    ``page_errors`` maps a page number to exceptions raised (one per
    request) before that page is served normally.
    """

    def __init__(
        self,
        orders: Optional[List[Dict[str, Any]]] = None,
        customers: Optional[List[Dict[str, Any]]] = None,
        total_count: Optional[int] = None,
        page_errors: Optional[Dict[int, List[BaseException]]] = None,
        transaction_errors: Optional[set] = None,
        shipment_errors: Optional[set] = None
    ):
        self.orders = orders or []
        self.customers = customers or []
        self.total_count = total_count
        self.page_errors = {page: list(errors) for page, errors in (page_errors or {}).items()}
        self.transaction_errors = transaction_errors or set()
        self.shipment_errors = shipment_errors or set()
        self.calls: List[tuple] = []

    def _page(self, records, page: int, page_size: int) -> Page:
        errors = self.page_errors.get(page)
        if errors:
            raise errors.pop(0)
        start = (page - 1) * page_size
        total = self.total_count if self.total_count is not None else len(records)
        return Page(items=[dict(r) for r in records[start:start + page_size]], total_count=total)

    async def get_orders(self, page, page_size, created_from=None):
        self.calls.append(("orders", page))
        return self._page(self.orders, page, page_size)

    async def get_customers(self, page, page_size, created_from=None):
        self.calls.append(("customers", page))
        return self._page(self.customers, page, page_size)

    async def get_customer(self, customer_id):
        self.calls.append(("customer", customer_id))
        for record in self.customers:
            if record["id"] == customer_id:
                full = {"addresses": [{"id": customer_id * 100, "city": "Lyon"}]}
                full.update(record)
                return Customer.model_validate(full)
        raise ResourceNotFoundError(f"Customer {customer_id} not found")

    async def get_order_transactions(self, order_id):
        self.calls.append(("transactions", order_id))
        if order_id in self.transaction_errors:
            raise NetworkError(f"Transactions unavailable for {order_id}")
        return [Transaction(transaction_id=order_id * 10)]

    async def get_order_shipments(self, order_id):
        self.calls.append(("shipments", order_id))
        if order_id in self.shipment_errors:
            raise NetworkError(f"Shipments unavailable for {order_id}")
        return [Shipment(entity_id=order_id * 100, created_at="2024-02-01 09:30:00")]

    async def aclose(self):
        pass

    def pages_requested(self, kind: str = "orders") -> List[int]:
        return [arg for name, arg in self.calls if name == kind]

    def calls_for(self, name: str) -> List[Any]:
        return [arg for call, arg in self.calls if call == name]


def build_order(entity_id: int, status: str = "processing", **fields) -> Dict[str, Any]:
    order = {
        "entity_id": entity_id,
        "increment_id": f"1000000{entity_id:02d}",
        "status": status,
        "created_at": "2024-01-15 10:00:00",
        "updated_at": "2024-01-16 12:00:00",
        "customer_email": f"customer{entity_id}@example.com",
        "customer_firstname": "Ada",
        "customer_lastname": "Lovelace",
        "total_item_count": 1,
        "subtotal": 100,
        "shipping_amount": 5,
        "tax_amount": 20,
        "grand_total": 125,
        "shipping_description": "Flat Rate - Fixed",
        "payment": {"method": "checkmo"},
        "billing_address": {
            "firstname": "Ada",
            "lastname": "Lovelace",
            "street": ["12 Analytical Row", "Floor 2"],
            "city": "London",
            "region": "Greater London",
            "postcode": "N1 9GU",
            "country_id": "GB",
            "telephone": "0123456789",
        },
        "items": [
            {
                "item_id": entity_id * 10,
                "sku": f"SKU-{entity_id}",
                "name": f"Product {entity_id}",
                "qty_ordered": 1,
                "price": 100,
                "row_total": 100,
                "product_type": "simple",
            }
        ],
    }
    order.update(fields)
    return order


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a temporary export directory"""
    return Settings(
        _env_file=None,
        MAGENTO_BASE_URL="https://shop.example.com",
        MAGENTO_ACCESS_TOKEN="test_token",
        REQUESTS_PER_SECOND=100,
        PAGE_SIZE=2,
        EXPORT_DIR=tmp_path / "exports",
        CHECKPOINT_INTERVAL=10,
        MAX_PAGE_RETRIES=3,
    )


@pytest.fixture
def order_factory():
    return build_order


@pytest.fixture
def mock_orders() -> List[Dict[str, Any]]:
    """Five orders, newest identifier first (the API's order)"""
    return [build_order(entity_id) for entity_id in range(5, 0, -1)]


@pytest.fixture
def mock_customers() -> List[Dict[str, Any]]:
    return [
        {
            "id": 1,
            "email": "grace@example.com",
            "firstname": "Grace",
            "lastname": "Hopper",
            "created_at": "2023-05-01 08:00:00",
            "group_id": 1,
            "store_id": 1,
            "website_id": 1,
            "default_billing": "11",
            "default_shipping": "12",
            "addresses": [
                {
                    "id": 11,
                    "city": "Arlington",
                    "country_id": "US",
                    "postcode": "22201",
                    "region": {"region": "Virginia", "region_code": "VA", "region_id": 61},
                    "street": ["1 Navy Way"],
                    "telephone": "555-0100",
                    "default_billing": True,
                },
                {
                    "id": 12,
                    "city": "New York",
                    "country_id": "US",
                    "postcode": "10001",
                    "street": "5th Avenue",
                    "default_shipping": True,
                },
            ],
        },
        {
            "id": 2,
            "email": "alan@example.com",
            "firstname": "Alan",
            "lastname": "Turing",
            "created_at": "2023-06-01 08:00:00",
            "group_id": 1,
            "store_id": 1,
            "website_id": 1,
            "addresses": [],
        },
    ]


@pytest.fixture
def fake_client_factory():
    return FakeMagentoClient


@pytest.fixture
def order_store(settings) -> DurableUnitStore:
    return DurableUnitStore(settings.cache_dir("orders"))


@pytest.fixture
def download_checkpoints(settings) -> CheckpointStore:
    return CheckpointStore(settings.cache_dir("orders") / DOWNLOAD_CHECKPOINT_FILE, DownloadCheckpoint)


@pytest.fixture
def process_checkpoints(settings) -> CheckpointStore:
    return CheckpointStore(settings.cache_dir("orders") / PROCESS_CHECKPOINT_FILE, ProcessCheckpoint)
