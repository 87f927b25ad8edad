"""
Entity sources: how each Magento collection is paged, enriched and formatted
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from core.exceptions import DataShapeError, ExportException
from ingestion.client import MagentoClient
from ingestion.formatters import (
    CUSTOMER_COLUMNS,
    FULFILLED_STATUSES,
    ORDER_COLUMNS,
    format_customer,
    format_order,
)
from models.base import EntityKind
from models.entity import Customer, Entity, Order, Page
from models.rows import Column, FormattedRow

logger = logging.getLogger(__name__)


class EntitySource(ABC):
    """
    Abstract base class for exportable collections.

    Responsibilities:
    - Fetch one page of raw records
    - Validate raw records into typed entities
    - Merge dependent sub-resources so a stored entity is self-contained
    - Format entities into flat rows for the CSV sink
    """

    kind: EntityKind
    model: Type[BaseModel]
    id_field: str
    columns: List[Column]

    def __init__(self, client: Optional[MagentoClient], created_from: Optional[str] = None):
        self.client = client
        self.created_from = created_from

    @abstractmethod
    async def fetch_page(self, page: int, page_size: int) -> Page:
        """Fetch page ``page`` (1-based) of the collection"""
        pass

    @abstractmethod
    async def enrich(self, entity: Entity) -> List[str]:
        """
        Merge dependent resources into ``entity`` in place.

        Returns:
            Warnings for sub-resources that could not be fetched; the
            entity is still usable without them.
        """
        pass

    @abstractmethod
    def format(self, entity: Entity) -> List[FormattedRow]:
        pass

    def entity_id(self, record: Dict[str, Any]) -> str:
        """Extract unique identifier from a raw record"""
        return str(record.get(self.id_field, ""))

    def validate(self, record: Dict[str, Any]) -> Entity:
        try:
            return self.model.model_validate(record)
        except ValidationError as e:
            raise DataShapeError(
                f"Record is not a valid {self.kind.value[:-1]}",
                context={
                    "entity_id": self.entity_id(record),
                    "field_errors": e.errors(include_url=False),
                },
                original_exception=e
            )


class OrderSource(EntitySource):
    """Sales orders, newest first, with transactions and shipments merged in"""

    kind = EntityKind.ORDERS
    model = Order
    id_field = "entity_id"
    columns = ORDER_COLUMNS

    async def fetch_page(self, page: int, page_size: int) -> Page:
        return await self.client.get_orders(page, page_size, created_from=self.created_from)

    async def enrich(self, order: Order) -> List[str]:
        warnings = []

        try:
            order.transactions = await self.client.get_order_transactions(order.entity_id)
        except ExportException as e:
            logger.warning(f"Could not fetch transactions for order {order.label}: {e.message}")
            warnings.append(f"Could not fetch transactions: {e.message}")

        try:
            embedded = order.embedded_shipments()
        except DataShapeError as e:
            logger.warning(f"Ignoring embedded shipments of order {order.label}: {e.message}")
            warnings.append(f"Could not read embedded shipments: {e.message}")
            embedded = []

        if embedded:
            order.shipments = embedded
        elif order.status in FULFILLED_STATUSES:
            try:
                order.shipments = await self.client.get_order_shipments(order.entity_id)
            except ExportException as e:
                logger.warning(f"Could not fetch shipments for order {order.label}: {e.message}")
                warnings.append(f"Could not fetch shipments: {e.message}")

        return warnings

    def format(self, order: Order) -> List[FormattedRow]:
        return format_order(order)


class CustomerSource(EntitySource):
    """Customers, oldest first; addresses come embedded in search results"""

    kind = EntityKind.CUSTOMERS
    model = Customer
    id_field = "id"
    columns = CUSTOMER_COLUMNS

    async def fetch_page(self, page: int, page_size: int) -> Page:
        return await self.client.get_customers(page, page_size, created_from=self.created_from)

    async def enrich(self, customer: Customer) -> List[str]:
        if "addresses" in customer.model_fields_set:
            return []

        # Some search endpoints strip addresses; load the full record instead
        try:
            full = await self.client.get_customer(customer.id)
        except ExportException as e:
            logger.warning(f"Could not fetch addresses for customer {customer.label}: {e.message}")
            return [f"Could not fetch addresses: {e.message}"]

        customer.addresses = full.addresses
        return []

    def format(self, customer: Customer) -> List[FormattedRow]:
        return format_customer(customer)


SOURCES = {
    EntityKind.ORDERS: OrderSource,
    EntityKind.CUSTOMERS: CustomerSource,
}


def build_source(
    kind: EntityKind,
    client: Optional[MagentoClient],
    created_from: Optional[str] = None
) -> EntitySource:
    return SOURCES[EntityKind(kind)](client, created_from=created_from)
