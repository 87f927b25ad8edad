"""
Pydantic models for Magento entities and their dependent resources.

Only the fields the exporter reads are declared; every other field of the
API document is kept (``extra="allow"``) so a persisted unit round-trips
the full record.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import DataShapeError

# Magento serialises amounts as JSON numbers, but some extensions send strings
Number = Union[int, float, str]


class MagentoRecord(BaseModel):
    """Base for API documents: unknown fields are preserved"""

    model_config = ConfigDict(extra="allow")


# ============================================================================
# Dependent resources
# ============================================================================

class Transaction(MagentoRecord):
    """Payment transaction from ``/V1/transactions``"""
    transaction_id: Optional[Union[int, str]] = None
    txn_id: Optional[str] = None
    txn_type: Optional[str] = None
    created_at: Optional[str] = None


class Shipment(MagentoRecord):
    """Shipment from ``/V1/shipments``"""
    entity_id: Optional[int] = None
    increment_id: Optional[str] = None
    created_at: Optional[str] = None


# ============================================================================
# Orders
# ============================================================================

class OrderAddress(MagentoRecord):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    company: Optional[str] = None
    street: Optional[Union[List[str], str]] = None
    city: Optional[str] = None
    region: Optional[str] = None
    region_code: Optional[str] = None
    postcode: Optional[str] = None
    country_id: Optional[str] = None
    telephone: Optional[str] = None


class OrderItem(MagentoRecord):
    item_id: Optional[int] = None
    parent_item_id: Optional[int] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    qty_ordered: Optional[Number] = None
    price: Optional[Number] = None
    row_total: Optional[Number] = None
    product_type: Optional[str] = None
    # Either a JSON string or an object, depending on the Magento version
    product_options: Optional[Any] = None


class Payment(MagentoRecord):
    method: Optional[str] = None


class StatusHistory(MagentoRecord):
    status: Optional[str] = None
    comment: Optional[str] = None
    created_at: Optional[str] = None


class Order(MagentoRecord):
    """
    Sales order.

    ``transactions`` and ``shipments`` are filled in by the download stage
    so that a persisted order is self-contained.
    """

    entity_id: int
    increment_id: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    customer_email: Optional[str] = None
    customer_firstname: Optional[str] = None
    customer_lastname: Optional[str] = None

    total_item_count: Optional[int] = None
    subtotal: Optional[Number] = None
    shipping_amount: Optional[Number] = None
    tax_amount: Optional[Number] = None
    grand_total: Optional[Number] = None
    shipping_description: Optional[str] = None

    payment: Optional[Payment] = None
    billing_address: Optional[OrderAddress] = None
    items: List[OrderItem] = Field(default_factory=list)
    status_histories: List[StatusHistory] = Field(default_factory=list)
    extension_attributes: Dict[str, Any] = Field(default_factory=dict)

    transactions: List[Transaction] = Field(default_factory=list)
    shipments: List[Shipment] = Field(default_factory=list)

    @field_validator("items", "status_histories", "transactions", "shipments", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("extension_attributes", mode="before")
    @classmethod
    def none_as_empty_dict(cls, v):
        return {} if v is None else v

    @property
    def label(self) -> str:
        return self.increment_id or str(self.entity_id)

    def embedded_shipments(self) -> List[Shipment]:
        """
        Shipments the API already returned inside ``extension_attributes``.

        Raises:
            DataShapeError: The embedded shipments are not shipment documents
        """
        raw = self.extension_attributes.get("shipments") or []
        try:
            if not isinstance(raw, list):
                raise TypeError(f"expected a list, got {type(raw).__name__}")
            return [Shipment.model_validate(s) for s in raw]
        except (TypeError, ValidationError) as e:
            raise DataShapeError(
                f"Order {self.label} has malformed embedded shipments",
                context={"entity_id": self.entity_id},
                original_exception=e
            )

    def shipping_address(self) -> Optional[OrderAddress]:
        """
        Address of the first shipping assignment (virtual orders have none).

        Raises:
            DataShapeError: The shipping assignment is not an address document
        """
        assignments = self.extension_attributes.get("shipping_assignments") or []
        if not assignments:
            return None
        try:
            address = ((assignments[0] or {}).get("shipping") or {}).get("address")
            if not address:
                return None
            return OrderAddress.model_validate(address)
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            raise DataShapeError(
                f"Order {self.label} has a malformed shipping assignment",
                context={"entity_id": self.entity_id},
                original_exception=e
            )


# ============================================================================
# Customers
# ============================================================================

class CustomerRegion(MagentoRecord):
    region: Optional[str] = None
    region_code: Optional[str] = None
    region_id: Optional[int] = None


class CustomerAddress(MagentoRecord):
    id: Optional[int] = None
    city: Optional[str] = None
    company: Optional[str] = None
    country_id: Optional[str] = None
    fax: Optional[str] = None
    telephone: Optional[str] = None
    postcode: Optional[str] = None
    prefix: Optional[str] = None
    region: Optional[CustomerRegion] = None
    street: Optional[Union[List[str], str]] = None
    default_billing: bool = False
    default_shipping: bool = False


class Customer(MagentoRecord):
    id: int
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    created_at: Optional[str] = None
    group_id: Optional[int] = None
    store_id: Optional[int] = None
    website_id: Optional[int] = None
    dob: Optional[str] = None
    gender: Optional[int] = None
    default_billing: Optional[Union[str, int]] = None
    default_shipping: Optional[Union[str, int]] = None
    addresses: List[CustomerAddress] = Field(default_factory=list)

    @field_validator("addresses", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    @property
    def entity_id(self) -> int:
        return self.id

    @property
    def label(self) -> str:
        return self.email or str(self.id)


Entity = Union[Order, Customer]


# ============================================================================
# List responses
# ============================================================================

class Page(MagentoRecord):
    """``{items, total_count}`` search result"""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: int = 0

    @field_validator("items", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v
