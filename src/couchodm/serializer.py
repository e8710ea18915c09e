"""Entity to document serialization.

The tracker never inspects entities directly; it asks a serializer for
the document form of an entity and compares documents by value.
"""

import copy
import dataclasses
from typing import Any

from couchodm.core.constants import RESERVED_FIELDS


class DocumentSerializer:
    """Converts entities to CouchDB document bodies and back.

    Supported entity shapes:
    - dict: copied, reserved ``_``-prefixed metadata keys dropped
    - dataclass instance: ``dataclasses.asdict``
    - any other object: its public instance attributes
    """

    def to_document(self, entity: Any) -> dict[str, Any]:
        """Serialize an entity to a document body.

        Args:
            entity: The entity to serialize.

        Returns:
            A deep copy of the entity's fields, safe to keep as a snapshot.
        """
        if isinstance(entity, dict):
            fields = entity
        elif dataclasses.is_dataclass(entity) and not isinstance(entity, type):
            fields = dataclasses.asdict(entity)
        elif hasattr(entity, "__dict__"):
            fields = {k: v for k, v in vars(entity).items() if not k.startswith("_")}
        else:
            raise TypeError(f"Cannot serialize entity of type {type(entity).__name__}")

        return copy.deepcopy(
            {k: v for k, v in fields.items() if k not in RESERVED_FIELDS}
        )

    def hydrate(self, entity: Any, document: dict[str, Any]) -> None:
        """Overwrite an entity's fields with a document body in place.

        Args:
            entity: The entity to update.
            document: Document fields, without metadata keys.
        """
        fields = {
            k: v for k, v in copy.deepcopy(document).items() if k not in RESERVED_FIELDS
        }
        if isinstance(entity, dict):
            entity.clear()
            entity.update(fields)
            return

        for key, value in fields.items():
            setattr(entity, key, value)

    def create(self, factory: Any, document: dict[str, Any]) -> Any:
        """Build a new entity of ``factory`` type from a document body."""
        fields = {
            k: v for k, v in copy.deepcopy(document).items() if k not in RESERVED_FIELDS
        }
        if factory is dict:
            return fields
        return factory(**fields)
