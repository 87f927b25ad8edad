"""
Persisted form of one downloaded entity
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from core.exceptions import DataShapeError
from models.base import EntityKind, utcnow
from models.entity import Customer, Entity, Order

ENTITY_MODELS = {
    EntityKind.ORDERS: Order,
    EntityKind.CUSTOMERS: Customer,
}


class UnitMetadata(BaseModel):
    """Download envelope stored next to the entity document"""
    downloaded_at: datetime = Field(default_factory=utcnow)
    entity_id: int
    increment_id: Optional[str] = None


class DurableUnit(BaseModel):
    """
    Self-contained on-disk document for one entity.

    ``document`` holds the full API record with its dependent resources
    already merged in, so processing never needs the network.
    """

    kind: EntityKind
    metadata: UnitMetadata
    document: Dict[str, Any]

    @classmethod
    def wrap(cls, kind: EntityKind, entity: Entity) -> "DurableUnit":
        return cls(
            kind=kind,
            metadata=UnitMetadata(
                entity_id=entity.entity_id,
                increment_id=getattr(entity, "increment_id", None),
            ),
            document=entity.model_dump(mode="json"),
        )

    def entity(self) -> Entity:
        """Validate the document into its typed entity."""
        model = ENTITY_MODELS[self.kind]
        try:
            return model.model_validate(self.document)
        except ValidationError as e:
            raise DataShapeError(
                f"Unit document is not a valid {self.kind.value[:-1]}",
                context={
                    "entity_id": self.metadata.entity_id,
                    "field_errors": e.errors(include_url=False),
                },
                original_exception=e
            )
