"""
Typed records flowing through the export pipeline.

Models:
    base: Shared enums (EntityKind, StageName, ErrorLevel)
    entity: Magento orders, customers and their dependent resources
    unit: DurableUnit, the persisted form of one entity
    checkpoint: Download and process stage checkpoints
    rows: Column definitions and flat output rows

Usage:
    from models import Order, DurableUnit, DownloadCheckpoint
    from models.base import EntityKind
"""

from models.base import EntityKind, ErrorLevel, StageName
from models.checkpoint import (
    DownloadCheckpoint,
    ErrorRecord,
    ProcessCheckpoint,
    StageCheckpoint,
)
from models.entity import (
    Customer,
    CustomerAddress,
    Order,
    OrderAddress,
    OrderItem,
    Page,
    Shipment,
    Transaction,
)
from models.rows import Column, FormattedRow
from models.unit import DurableUnit, UnitMetadata

__all__ = [
    "EntityKind",
    "ErrorLevel",
    "StageName",
    "Order",
    "OrderAddress",
    "OrderItem",
    "Customer",
    "CustomerAddress",
    "Transaction",
    "Shipment",
    "Page",
    "DurableUnit",
    "UnitMetadata",
    "StageCheckpoint",
    "DownloadCheckpoint",
    "ProcessCheckpoint",
    "ErrorRecord",
    "Column",
    "FormattedRow",
]
