"""
Copy-on-write in-memory entity store shared by the policy and permission stores.

Ids live in one namespace across all tenants; reads are tenant filtered.
Writers build a new dict under a lock and swap it in, so readers holding
the previous dict always see a consistent snapshot.
"""

import threading
import uuid
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar, Union

from shared.errors import ConflictError, ValidationError
from shared.logging import get_logger

Entity = TypeVar("Entity")


class EntityStore(Generic[Entity]):
    """Tenant-filtered map of entities keyed by id."""

    entity_name = "Entity"

    def __init__(self, id_prefix: str, logger_name: str):
        self.id_prefix = id_prefix
        self.logger = get_logger(logger_name)
        self._entities: Dict[str, Entity] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def generate_id(self) -> str:
        return f"{self.id_prefix}_{uuid.uuid4().hex}"

    def get_by_id(self, entity_id: str, tenant_id: Optional[str] = None) -> Optional[Entity]:
        """Get an entity by id; None when missing or owned by another tenant."""
        entity = self._entities.get(entity_id)
        if entity is None:
            return None
        if tenant_id is not None and entity.tenant_id != tenant_id:
            return None
        return entity

    def list(self, tenant_id: Optional[str] = None) -> List[Entity]:
        """List entities; with a tenant filter, global entities are excluded."""
        entities = self._entities.values()
        if tenant_id is None:
            return list(entities)
        return [e for e in entities if e.tenant_id == tenant_id]

    def delete(self, entity_id: str, tenant_id: Optional[str] = None) -> bool:
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None:
                return False
            if tenant_id is not None and entity.tenant_id != tenant_id:
                return False
            entities = dict(self._entities)
            del entities[entity_id]
            self._entities = entities

        self.logger.info(f"{self.entity_name} deleted", id=entity_id, tenant_id=entity.tenant_id)
        return True

    def bulk_import(self, entities: Iterable[Union[Entity, Mapping[str, Any]]]) -> int:
        """Load trusted entities without validation, replacing any with the same id.

        Mappings are stored data (camelCase or snake_case keys, as written by
        ``to_dict``) and are built with ``from_record`` before anything is
        stored, so one malformed record leaves the store unchanged.
        """
        built = [
            self.from_record(entity) if isinstance(entity, Mapping) else entity
            for entity in entities
        ]

        with self._lock:
            merged = dict(self._entities)
            for entity in built:
                merged[entity.id] = entity
            self._entities = merged

        self.logger.info(f"{self.entity_name} import completed", count=len(built))
        return len(built)

    def from_record(self, record: Mapping[str, Any]) -> Entity:
        """Build an entity from stored data."""
        raise NotImplementedError

    def export(self) -> List[Entity]:
        """Every stored entity across all tenants."""
        return list(self._entities.values())

    def clear(self) -> None:
        with self._lock:
            self._entities = {}
        self.logger.info(f"All {self.entity_name.lower()} entries cleared")

    def _insert(self, entity_id: Optional[str], build: Callable[[str], Entity]) -> Entity:
        if entity_id is not None and not entity_id.strip():
            entity_id = None
        entity_id = entity_id or self.generate_id()

        with self._lock:
            if entity_id in self._entities:
                raise ConflictError(
                    f"{self.entity_name} with ID '{entity_id}' already exists",
                    details={"id": entity_id}
                )
            entity = build(entity_id)
            entities = dict(self._entities)
            entities[entity_id] = entity
            self._entities = entities

        self.logger.info(f"{self.entity_name} created", id=entity_id, tenant_id=entity.tenant_id)
        return entity

    def _replace(
        self,
        entity_id: str,
        tenant_id: Optional[str],
        build: Callable[[Entity], Entity]
    ) -> Optional[Entity]:
        with self._lock:
            existing = self.get_by_id(entity_id, tenant_id)
            if existing is None:
                return None
            updated = build(existing)
            entities = dict(self._entities)
            entities[entity_id] = updated
            self._entities = entities

        self.logger.info(f"{self.entity_name} updated", id=entity_id, tenant_id=updated.tenant_id)
        return updated


def require_name(entity_name: str, name: Optional[str]) -> None:
    if not name or not name.strip():
        raise ValidationError(f"{entity_name} name is required")
