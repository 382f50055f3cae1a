"""
Permission store.
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from shared.errors import ValidationError
from .models import (
    Permission, PermissionCreateRequest, PermissionRecord, PermissionUpdateRequest,
    parse_input, utcnow
)
from .patterns import PatternError, parse_pattern, compile_patterns
from .store import EntityStore, require_name


class PermissionStore(EntityStore[Permission]):
    """Authoritative in-memory store of permissions."""

    entity_name = "Permission"

    def __init__(self, id_prefix: str = "perm"):
        super().__init__(id_prefix, "authz.permissions")

    def create(self, request: Union[PermissionCreateRequest, Dict[str, Any]]) -> Permission:
        """Create a permission; effect defaults to allow and priority to 0."""
        request = parse_input(PermissionCreateRequest, request)
        require_name(self.entity_name, request.name)
        validate_scope(request.resource, request.actions)

        def build(permission_id: str) -> Permission:
            now = utcnow()
            return Permission(
                id=permission_id,
                name=request.name,
                description=request.description,
                resource=request.resource,
                actions=tuple(request.actions),
                effect=request.effect,
                priority=request.priority,
                tenant_id=request.tenant_id,
                metadata=dict(request.metadata),
                created_at=now,
                updated_at=now
            )

        return self._insert(request.id, build)

    def update(
        self,
        permission_id: str,
        request: Union[PermissionUpdateRequest, Dict[str, Any]],
        tenant_id: Optional[str] = None
    ) -> Optional[Permission]:
        """Merge a partial update; None when the permission does not exist."""
        request = parse_input(PermissionUpdateRequest, request)
        changes = request.model_dump(exclude_unset=True)

        if "name" in changes:
            require_name(self.entity_name, changes["name"])
        for key in ("effect", "priority", "metadata"):
            if key in changes and changes[key] is None:
                del changes[key]
        if "actions" in changes and changes["actions"] is not None:
            changes["actions"] = tuple(changes["actions"])

        def build(existing: Permission) -> Permission:
            if "resource" in changes or "actions" in changes:
                validate_scope(
                    changes.get("resource", existing.resource),
                    changes.get("actions", existing.actions)
                )
            return replace(existing, **changes, updated_at=utcnow())

        return self._replace(permission_id, tenant_id, build)

    def from_record(self, record: Mapping[str, Any]) -> Permission:
        """Build a stored permission as-is; only malformed patterns are rejected."""
        record = parse_input(PermissionRecord, dict(record))
        created_at = record.created_at or utcnow()
        try:
            return Permission(
                id=record.id,
                name=record.name,
                description=record.description,
                resource=record.resource,
                actions=tuple(record.actions),
                effect=record.effect,
                priority=record.priority,
                tenant_id=record.tenant_id,
                metadata=dict(record.metadata),
                created_at=created_at,
                updated_at=record.updated_at or created_at
            )
        except PatternError as e:
            raise ValidationError(str(e), details={"id": record.id}) from e

    def resolve(self, permission_ids: Iterable[str], tenant_id: Optional[str] = None) -> List[Permission]:
        """Resolve ids to permissions, dropping unknown ids and other tenants' permissions."""
        entities = self._entities
        permissions = []
        seen = set()
        for permission_id in permission_ids:
            permission = entities.get(permission_id)
            if permission is None or permission_id in seen:
                continue
            seen.add(permission_id)
            if tenant_id is not None and permission.tenant_id not in (None, tenant_id):
                continue
            permissions.append(permission)
        return permissions


def validate_scope(resource: Optional[str], actions: Optional[Iterable[str]]) -> None:
    if not resource or not resource.strip():
        raise ValidationError("Permission resource is required")
    if not actions:
        raise ValidationError("Permission must have at least one action")

    try:
        parse_pattern(resource)
        compile_patterns(actions)
    except PatternError as e:
        raise ValidationError(str(e), details={"resource": resource}) from e
