"""
Rule data models for the authorization engine.
"""

from typing import Dict, Any, Optional, List, Tuple, Type, TypeVar, Union
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from shared.errors import AuthorizationError, ValidationError
from .patterns import Pattern, compile_patterns, parse_pattern


class Effect(str, Enum):
    """Rule effect."""
    ALLOW = "allow"
    DENY = "deny"


class ConditionOperator(str, Enum):
    """Built-in condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    IN = "in"
    NOT_IN = "notIn"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"
    BETWEEN = "between"
    REGEX = "regex"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_tuple(values: Optional[Any]) -> Optional[Tuple[Any, ...]]:
    if values is None:
        return None
    return tuple(values)


def _freeze(obj: Any, name: str, value: Any) -> None:
    object.__setattr__(obj, name, value)


@dataclass(frozen=True)
class LiteralValue:
    """Condition operand compared as-is."""
    value: Any


@dataclass(frozen=True)
class ContextRef:
    """Condition operand read from the authorization context."""
    path: str


Operand = Union[LiteralValue, ContextRef]


def make_operand(value: Any, is_variable: bool) -> Operand:
    """Build the operand for a condition value.

    Variable values reference a context path, written either as ``${userId}``
    or as the bare path ``userId``.
    """
    if not is_variable:
        return LiteralValue(value)
    if not isinstance(value, str):
        raise ValueError("Variable condition values must be context paths")
    path = value.strip()
    if path.startswith("${") and path.endswith("}"):
        path = path[2:-1].strip()
    if not path:
        raise ValueError("Variable condition values must be context paths")
    return ContextRef(path)


@dataclass(frozen=True)
class Condition:
    """Attribute condition attached to a statement."""
    field: str
    operator: str
    value: Any = None
    is_variable: bool = False
    operand: Operand = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if isinstance(self.operator, Enum):
            _freeze(self, "operator", self.operator.value)
        _freeze(self, "operand", make_operand(self.value, self.is_variable))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "is_variable": self.is_variable
        }


@dataclass(frozen=True)
class Statement:
    """One allow/deny rule within a policy."""
    effect: Effect
    actions: Tuple[str, ...]
    resources: Tuple[str, ...]
    principals: Optional[Tuple[str, ...]] = None
    not_principals: Optional[Tuple[str, ...]] = None
    not_actions: Optional[Tuple[str, ...]] = None
    not_resources: Optional[Tuple[str, ...]] = None
    conditions: Tuple[Condition, ...] = ()
    sid: Optional[str] = None

    action_patterns: Tuple[Pattern, ...] = field(init=False, repr=False, compare=False)
    not_action_patterns: Tuple[Pattern, ...] = field(init=False, repr=False, compare=False)
    resource_patterns: Tuple[Pattern, ...] = field(init=False, repr=False, compare=False)
    not_resource_patterns: Tuple[Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        _freeze(self, "effect", Effect(self.effect))
        for name in ("actions", "resources", "principals", "not_principals",
                     "not_actions", "not_resources"):
            _freeze(self, name, _as_tuple(getattr(self, name)))
        _freeze(self, "conditions", tuple(self.conditions or ()))

        _freeze(self, "action_patterns", compile_patterns(self.actions))
        _freeze(self, "not_action_patterns", compile_patterns(self.not_actions))
        _freeze(self, "resource_patterns", compile_patterns(self.resources))
        _freeze(self, "not_resource_patterns", compile_patterns(self.not_resources))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sid": self.sid,
            "effect": self.effect.value,
            "principals": _as_list(self.principals),
            "not_principals": _as_list(self.not_principals),
            "actions": list(self.actions),
            "not_actions": _as_list(self.not_actions),
            "resources": list(self.resources),
            "not_resources": _as_list(self.not_resources),
            "conditions": [c.to_dict() for c in self.conditions]
        }


def _as_list(values: Optional[Tuple[Any, ...]]) -> Optional[List[Any]]:
    return None if values is None else list(values)


@dataclass(frozen=True)
class Policy:
    """Ordered, statement-based access rule."""
    id: str
    name: str
    statements: Tuple[Statement, ...]
    description: Optional[str] = None
    version: str = "1.0"
    is_active: bool = True
    priority: int = 0
    tenant_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        _freeze(self, "statements", tuple(self.statements))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "statements": [s.to_dict() for s in self.statements],
            "is_active": self.is_active,
            "priority": self.priority,
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


@dataclass(frozen=True)
class Permission:
    """Flat capability grant on a single resource pattern."""
    id: str
    name: str
    resource: str
    actions: Tuple[str, ...]
    effect: Effect = Effect.ALLOW
    priority: int = 0
    tenant_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    resource_pattern: Pattern = field(init=False, repr=False, compare=False)
    action_patterns: Tuple[Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        _freeze(self, "effect", Effect(self.effect))
        _freeze(self, "actions", tuple(self.actions))
        _freeze(self, "resource_pattern", parse_pattern(self.resource))
        _freeze(self, "action_patterns", compile_patterns(self.actions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "resource": self.resource,
            "actions": list(self.actions),
            "effect": self.effect.value,
            "priority": self.priority,
            "tenant_id": self.tenant_id,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


@dataclass
class AuthorizationContext:
    """Context for a single authorization decision."""
    user_id: str
    tenant_id: Optional[str]
    resource: str
    action: str
    resource_id: Optional[str] = None
    resource_attributes: Dict[str, Any] = field(default_factory=dict)
    user_attributes: Dict[str, Any] = field(default_factory=dict)
    request_context: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)

    @property
    def resource_key(self) -> str:
        """Resource as matched by statements: ``resource[:resource_id]``."""
        if self.resource_id:
            return f"{self.resource}:{self.resource_id}"
        return self.resource


@dataclass
class EvaluationResult:
    """Result of an authorization decision."""
    allowed: bool
    reason: str
    decided_by: Optional[str] = None
    denied_by: Optional[List[str]] = None
    matching_permissions: Optional[List[str]] = None
    evaluation_time_ms: float = 0.0
    trace: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def raise_for_denied(self) -> None:
        """Raise a generic AuthorizationError when access was denied."""
        if not self.allowed:
            raise AuthorizationError(details={"reason": self.reason})


@dataclass
class BatchCheck:
    """One resource/action pair in a batch evaluation."""
    resource: str
    action: str
    resource_id: Optional[str] = None
    resource_attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchEvaluationResult:
    """Results of a batch evaluation, in check order."""
    results: List[EvaluationResult]
    total_evaluation_time_ms: float = 0.0

    @property
    def all_allowed(self) -> bool:
        return all(result.allowed for result in self.results)


class _InputModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ConditionInput(_InputModel):
    """Condition as supplied by an administrator."""
    field: Optional[str] = Field(None, description="Dot-path into the context")
    operator: Optional[str] = Field(None, description="Condition operator")
    value: Any = Field(None, description="Literal value or context path")
    is_variable: bool = Field(False, description="Whether value is a context path")


class StatementInput(_InputModel):
    """Statement as supplied by an administrator."""
    sid: Optional[str] = None
    effect: Optional[Effect] = None
    principals: Optional[List[str]] = None
    not_principals: Optional[List[str]] = None
    actions: List[str] = Field(default_factory=list)
    not_actions: Optional[List[str]] = None
    resources: List[str] = Field(default_factory=list)
    not_resources: Optional[List[str]] = None
    conditions: Optional[List[ConditionInput]] = None


class PolicyCreateRequest(_InputModel):
    """Request model for creating a policy."""
    id: Optional[str] = Field(None, description="Policy ID, generated when omitted")
    name: Optional[str] = Field(None, description="Policy name")
    description: Optional[str] = Field(None, description="Policy description")
    version: Optional[str] = Field(None, description="Policy version")
    statements: List[StatementInput] = Field(default_factory=list)
    is_active: bool = Field(True, description="Whether the policy participates")
    priority: int = Field(0, description="Higher priority evaluates first")
    tenant_id: Optional[str] = Field(None, description="Tenant ID, global when omitted")


class PolicyUpdateRequest(_InputModel):
    """Request model for updating a policy."""
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    statements: Optional[List[StatementInput]] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None


class PermissionCreateRequest(_InputModel):
    """Request model for creating a permission."""
    id: Optional[str] = Field(None, description="Permission ID, generated when omitted")
    name: Optional[str] = Field(None, description="Permission name")
    description: Optional[str] = None
    resource: Optional[str] = Field(None, description="Resource pattern")
    actions: List[str] = Field(default_factory=list)
    effect: Effect = Effect.ALLOW
    priority: int = 0
    tenant_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PermissionUpdateRequest(_InputModel):
    """Request model for updating a permission."""
    name: Optional[str] = None
    description: Optional[str] = None
    resource: Optional[str] = None
    actions: Optional[List[str]] = None
    effect: Optional[Effect] = None
    priority: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class PolicyRecord(PolicyCreateRequest):
    """Stored policy, as exported by this or another service."""
    id: str = Field(..., description="Policy ID")
    name: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PermissionRecord(PermissionCreateRequest):
    """Stored permission, as exported by this or another service."""
    id: str = Field(..., description="Permission ID")
    name: str = ""
    resource: str = Field(..., description="Resource pattern")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


InputModel = TypeVar("InputModel", bound=BaseModel)


def parse_input(model: Type[InputModel], data: Union[InputModel, Dict[str, Any]]) -> InputModel:
    """Coerce a mapping into an input model, raising ValidationError on bad shape."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e
