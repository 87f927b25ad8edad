"""
Turn typed entities into flat CSV rows.

Both formatters are pure: one entity in, zero or more rows out, keyed by
the column keys below. Values are passed through as the API sent them;
the sink renders missing values as empty cells.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.exceptions import DataShapeError
from models.entity import Customer, CustomerAddress, Order, OrderAddress, OrderItem
from models.rows import Column, FormattedRow

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = [
    ("firstname", "First Name"),
    ("lastname", "Last Name"),
    ("company", "Company"),
    ("street", "Street"),
    ("city", "City"),
    ("region", "Region"),
    ("postcode", "Postcode"),
    ("country_id", "Country"),
    ("telephone", "Telephone"),
]

ORDER_COLUMNS: List[Column] = [
    Column("increment_id", "Order Number"),
    Column("created_at", "Order Date"),
    Column("status", "Status"),
    Column("fulfillment_date", "Fulfillment Date"),
    Column("customer_email", "Customer Email"),
    Column("customer_firstname", "Customer First Name"),
    Column("customer_lastname", "Customer Last Name"),
    Column("total_item_count", "Total Items"),
    Column("subtotal", "Subtotal"),
    Column("shipping_amount", "Shipping Amount"),
    Column("tax_amount", "Tax Amount"),
    Column("grand_total", "Grand Total"),
    Column("shipping_description", "Shipping Method"),
    Column("payment_method", "Payment Method"),
    Column("transaction_ids", "Transaction IDs"),
    *[Column(f"billing_{key}", f"Billing {title}") for key, title in ADDRESS_FIELDS],
    *[Column(f"shipping_{key}", f"Shipping {title}") for key, title in ADDRESS_FIELDS],
    Column("item_sku", "Item SKU"),
    Column("item_parent_sku", "Parent SKU"),
    Column("item_name", "Item Name"),
    Column("item_qty", "Item Quantity"),
    Column("item_price", "Item Price"),
    Column("item_row_total", "Item Row Total"),
    Column("product_type", "Product Type"),
    Column("product_options", "Product Options"),
]

CUSTOMER_COLUMNS: List[Column] = [
    Column("customer_id", "Customer ID"),
    Column("email", "Email"),
    Column("firstname", "First Name"),
    Column("lastname", "Last Name"),
    Column("created_at", "Created Date"),
    Column("group_id", "Customer Group ID"),
    Column("store_id", "Store ID"),
    Column("website_id", "Website ID"),
    Column("dob", "Date of Birth"),
    Column("gender", "Gender"),
    Column("address_id", "Address ID"),
    Column("address_type", "Address Type"),
    Column("city", "City"),
    Column("company", "Company"),
    Column("country_id", "Country"),
    Column("fax", "Fax"),
    Column("telephone", "Telephone"),
    Column("postcode", "Postcode"),
    Column("prefix", "Prefix"),
    Column("region", "Region"),
    Column("region_code", "Region Code"),
    Column("street", "Street"),
    Column("is_default_billing", "Is Default Billing"),
    Column("is_default_shipping", "Is Default Shipping"),
]

FULFILLED_STATUSES = ("complete", "shipped")


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse Magento ``YYYY-MM-DD HH:MM:SS`` (or ISO) timestamps as naive UTC"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _join_street(street) -> str:
    if isinstance(street, list):
        return ", ".join(street)
    return street or ""


# ============================================================================
# Orders
# ============================================================================

def extract_fulfillment_date(order: Order) -> str:
    """
    Best guess at the date an order shipped, as ``YYYY-MM-DD``.

    Sources in order: earliest shipment, first status history entry that
    mentions shipping, ``updated_at`` of a complete order.
    """
    shipments = order.shipments
    if not shipments:
        try:
            shipments = order.embedded_shipments()
        except DataShapeError as e:
            logger.warning(e.message)
            shipments = []
    dates = sorted(d for d in (_parse_date(s.created_at) for s in shipments) if d)
    if dates:
        return dates[0].date().isoformat()

    for history in order.status_histories:
        if (
            history.status in FULFILLED_STATUSES
            or (history.comment and "shipped" in history.comment.lower())
        ):
            shipped_at = _parse_date(history.created_at)
            return shipped_at.date().isoformat() if shipped_at else ""

    if order.status == "complete":
        updated_at = _parse_date(order.updated_at)
        if updated_at:
            return updated_at.date().isoformat()

    return ""


def address_fields(prefix: str, address: Optional[OrderAddress]) -> Dict[str, str]:
    """Flatten an order address into ``<prefix>_<field>`` columns"""
    if address is None:
        return {f"{prefix}_{key}": "" for key, _ in ADDRESS_FIELDS}

    return {
        f"{prefix}_firstname": address.firstname or "",
        f"{prefix}_lastname": address.lastname or "",
        f"{prefix}_company": address.company or "",
        f"{prefix}_street": _join_street(address.street),
        f"{prefix}_city": address.city or "",
        f"{prefix}_region": address.region or address.region_code or "",
        f"{prefix}_postcode": address.postcode or "",
        f"{prefix}_country_id": address.country_id or "",
        f"{prefix}_telephone": address.telephone or "",
    }


def format_product_options(item: OrderItem, order_label: str) -> str:
    """``label: value; ...`` from ``attributes_info``; malformed options yield ''"""
    options = item.product_options
    if not options:
        return ""

    try:
        if isinstance(options, str):
            options = json.loads(options)
        attributes = options.get("attributes_info") or []
        return "; ".join(f"{attr['label']}: {attr['value']}" for attr in attributes)
    except (ValueError, AttributeError, KeyError, TypeError) as e:
        logger.warning(
            f"Could not parse product options for item {item.sku} "
            f"in order {order_label}: {e}"
        )
        return ""


def format_order(order: Order) -> List[FormattedRow]:
    """One row per line item, each carrying the full order header."""
    transaction_ids = ";".join(
        str(t.transaction_id) for t in order.transactions if t.transaction_id is not None
    )
    payment_method = order.payment.method if order.payment and order.payment.method else "N/A"

    base: FormattedRow = {
        "increment_id": order.increment_id,
        "created_at": order.created_at,
        "status": order.status,
        "fulfillment_date": extract_fulfillment_date(order),
        "customer_email": order.customer_email,
        "customer_firstname": order.customer_firstname or "Guest",
        "customer_lastname": order.customer_lastname or "Guest",
        "total_item_count": order.total_item_count,
        "subtotal": order.subtotal,
        "shipping_amount": order.shipping_amount,
        "tax_amount": order.tax_amount,
        "grand_total": order.grand_total,
        "shipping_description": order.shipping_description,
        "payment_method": payment_method,
        "transaction_ids": transaction_ids,
    }
    base.update(address_fields("billing", order.billing_address))
    try:
        shipping_address = order.shipping_address()
    except DataShapeError as e:
        logger.warning(e.message)
        shipping_address = None
    base.update(address_fields("shipping", shipping_address))

    skus_by_item_id = {
        item.item_id: item.sku for item in order.items if item.item_id is not None
    }

    rows = []
    for item in order.items:
        parent_sku = ""
        if item.parent_item_id:
            parent_sku = skus_by_item_id.get(item.parent_item_id) or ""

        row = dict(base)
        row.update({
            "item_sku": item.sku,
            "item_parent_sku": parent_sku,
            "item_name": item.name,
            "item_qty": item.qty_ordered,
            "item_price": item.price,
            "item_row_total": item.row_total,
            "product_type": item.product_type or "",
            "product_options": format_product_options(item, order.label),
        })
        rows.append(row)

    return rows


# ============================================================================
# Customers
# ============================================================================

def address_type(address: CustomerAddress, customer: Customer) -> str:
    types = []
    if address.id is not None:
        if str(address.id) == str(customer.default_billing):
            types.append("Billing")
        if str(address.id) == str(customer.default_shipping):
            types.append("Shipping")
    return "/".join(types) if types else "Other"


def format_customer(customer: Customer) -> List[FormattedRow]:
    """One row per address, or a single row without address data."""
    base: FormattedRow = {
        "customer_id": customer.id,
        "email": customer.email,
        "firstname": customer.firstname,
        "lastname": customer.lastname,
        "created_at": customer.created_at,
        "group_id": customer.group_id,
        "store_id": customer.store_id,
        "website_id": customer.website_id,
        "dob": customer.dob or "",
        "gender": customer.gender or "",
    }

    if not customer.addresses:
        return [base]

    rows = []
    for address in customer.addresses:
        region = address.region
        row = dict(base)
        row.update({
            "address_id": address.id,
            "address_type": address_type(address, customer),
            "city": address.city,
            "company": address.company or "",
            "country_id": address.country_id,
            "fax": address.fax or "",
            "telephone": address.telephone or "",
            "postcode": address.postcode,
            "prefix": address.prefix or "",
            "region": (region.region if region else None) or "",
            "region_code": (region.region_code if region else None) or "",
            "street": _join_street(address.street),
            "is_default_billing": "Yes" if address.default_billing else "No",
            "is_default_shipping": "Yes" if address.default_shipping else "No",
        })
        rows.append(row)

    return rows
