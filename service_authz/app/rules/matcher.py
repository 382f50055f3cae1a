"""
Statement and permission matching shared by the policy and permission passes.
"""

from typing import AbstractSet, Iterable, Optional, Tuple

from .conditions import evaluate_conditions
from .models import AuthorizationContext, Permission, Statement
from .patterns import WILDCARD, Pattern, matches_any


def principal_candidates(user_id: str, permission_ids: Iterable[str]) -> frozenset:
    """Identities a request can be matched on: the user plus every permission/role id."""
    return frozenset([user_id, *permission_ids])


def _names_principal(principals: Iterable[str], candidates: AbstractSet[str]) -> bool:
    return any(p == WILDCARD or p in candidates for p in principals)


def matches_resource(patterns: Tuple[Pattern, ...], context: AuthorizationContext) -> bool:
    """Match the resource key; a literal pattern naming the bare resource type also covers its instances."""
    key = context.resource_key
    for pattern in patterns:
        if pattern.matches(key):
            return True
        if key != context.resource and pattern.is_literal and pattern.raw == context.resource:
            return True
    return False


class StatementMatcher:
    """Predicate deciding whether a statement or permission applies to a request."""

    def __init__(self, empty_principals_match_none: bool = False):
        self.empty_principals_match_none = empty_principals_match_none

    def matches_principal(
        self,
        statement: Statement,
        candidates: AbstractSet[str]
    ) -> bool:
        if statement.principals is not None:
            if statement.principals:
                if not _names_principal(statement.principals, candidates):
                    return False
            elif self.empty_principals_match_none:
                return False

        if statement.not_principals and _names_principal(statement.not_principals, candidates):
            return False

        return True

    def matches_statement(
        self,
        statement: Statement,
        context: AuthorizationContext,
        candidates: Optional[AbstractSet[str]] = None
    ) -> bool:
        """Check whether every clause of the statement holds for the request."""
        if candidates is None:
            candidates = principal_candidates(context.user_id, ())

        if not self.matches_principal(statement, candidates):
            return False

        if not matches_any(statement.action_patterns, context.action):
            return False
        if matches_any(statement.not_action_patterns, context.action):
            return False

        if not matches_resource(statement.resource_patterns, context):
            return False
        if matches_resource(statement.not_resource_patterns, context):
            return False

        if statement.conditions and not evaluate_conditions(statement.conditions, context):
            return False

        return True

    def matches_permission(self, permission: Permission, context: AuthorizationContext) -> bool:
        """Permissions match on resource type and action only."""
        if permission.tenant_id is not None and permission.tenant_id != context.tenant_id:
            return False
        if not permission.resource_pattern.matches(context.resource):
            return False
        return matches_any(permission.action_patterns, context.action)
