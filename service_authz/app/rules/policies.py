"""
Policy store.
"""

from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from shared.errors import ValidationError
from .conditions import is_known_operator
from .models import (
    Condition, ConditionInput, Policy, PolicyCreateRequest, PolicyRecord, PolicyUpdateRequest,
    Statement, StatementInput, parse_input, utcnow
)
from .patterns import PatternError
from .store import EntityStore, require_name

DEFAULT_POLICY_VERSION = "1.0"


class PolicyStore(EntityStore[Policy]):
    """Authoritative in-memory store of policies."""

    entity_name = "Policy"

    def __init__(self, id_prefix: str = "policy"):
        super().__init__(id_prefix, "authz.policies")

    def create(self, request: Union[PolicyCreateRequest, Dict[str, Any]]) -> Policy:
        """Create a policy, validating its structure.

        Raises:
            ValidationError: missing name, no statements, or a malformed statement.
            ConflictError: the id is already taken by any tenant's policy.
        """
        request = parse_input(PolicyCreateRequest, request)
        require_name(self.entity_name, request.name)
        statements = build_statements(request.statements)

        def build(policy_id: str) -> Policy:
            now = utcnow()
            return Policy(
                id=policy_id,
                name=request.name,
                description=request.description,
                version=request.version or DEFAULT_POLICY_VERSION,
                statements=statements,
                is_active=request.is_active,
                priority=request.priority,
                tenant_id=request.tenant_id,
                created_at=now,
                updated_at=now
            )

        return self._insert(request.id, build)

    def update(
        self,
        policy_id: str,
        request: Union[PolicyUpdateRequest, Dict[str, Any]],
        tenant_id: Optional[str] = None
    ) -> Optional[Policy]:
        """Merge a partial update into a policy; None when it does not exist."""
        request = parse_input(PolicyUpdateRequest, request)
        changes = request.model_dump(exclude_unset=True)

        if "name" in changes:
            require_name(self.entity_name, changes["name"])
        if "statements" in changes:
            changes["statements"] = build_statements(request.statements)
        for key in ("is_active", "priority", "version"):
            if key in changes and changes[key] is None:
                del changes[key]

        return self._replace(
            policy_id,
            tenant_id,
            lambda existing: replace(existing, **changes, updated_at=utcnow())
        )

    def from_record(self, record: Mapping[str, Any]) -> Policy:
        """Build a stored policy as-is; only malformed patterns or effects are rejected."""
        record = parse_input(PolicyRecord, dict(record))
        try:
            statements = [
                make_statement(statement, [make_condition(c) for c in statement.conditions or ()])
                for statement in record.statements
            ]
        except ValueError as e:
            raise ValidationError(str(e), details={"id": record.id}) from e

        created_at = record.created_at or utcnow()
        return Policy(
            id=record.id,
            name=record.name,
            description=record.description,
            version=record.version or DEFAULT_POLICY_VERSION,
            statements=statements,
            is_active=record.is_active,
            priority=record.priority,
            tenant_id=record.tenant_id,
            created_at=created_at,
            updated_at=record.updated_at or created_at
        )

    def eligible(self, tenant_id: Optional[str]) -> List[Policy]:
        """Active policies applying to a tenant (its own plus global), highest priority first."""
        policies = [
            policy for policy in self._entities.values()
            if policy.is_active and (policy.tenant_id is None or policy.tenant_id == tenant_id)
        ]
        policies.sort(key=lambda p: p.priority, reverse=True)
        return policies


def build_statements(statements: Optional[Sequence[StatementInput]]) -> List[Statement]:
    """Validate statement inputs and convert them to statements."""
    if not statements:
        raise ValidationError("Policy must have at least one statement")

    return [build_statement(statement, index) for index, statement in enumerate(statements)]


def build_statement(statement: StatementInput, index: int = 0) -> Statement:
    details = {"statement": statement.sid or index}

    if statement.effect is None:
        raise ValidationError("Statement effect is required", details=details)
    if not statement.actions:
        raise ValidationError("Statement must have at least one action", details=details)
    if not statement.resources:
        raise ValidationError("Statement must have at least one resource", details=details)

    conditions = [build_condition(c, details) for c in statement.conditions or ()]

    try:
        return make_statement(statement, conditions)
    except PatternError as e:
        raise ValidationError(str(e), details=details) from e


def build_condition(condition: ConditionInput, details: Dict[str, Any]) -> Condition:
    if not condition.field:
        raise ValidationError("Condition field is required", details=details)
    if not condition.operator:
        raise ValidationError("Condition operator is required", details=details)
    if not is_known_operator(condition.operator):
        raise ValidationError(
            f"Unknown condition operator '{condition.operator}'",
            details=details
        )

    try:
        return make_condition(condition)
    except ValueError as e:
        raise ValidationError(str(e), details=details) from e


def make_statement(statement: StatementInput, conditions: Sequence[Condition]) -> Statement:
    return Statement(
        sid=statement.sid,
        effect=statement.effect,
        principals=statement.principals,
        not_principals=statement.not_principals,
        actions=statement.actions,
        not_actions=statement.not_actions,
        resources=statement.resources,
        not_resources=statement.not_resources,
        conditions=conditions
    )


def make_condition(condition: ConditionInput) -> Condition:
    return Condition(
        field=condition.field,
        operator=condition.operator,
        value=condition.value,
        is_variable=condition.is_variable
    )
