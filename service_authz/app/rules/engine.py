"""
Authorization decision engine.

Decision order for a request:

1. A ``*`` permission id grants full access.
2. Active policies for the tenant (plus global ones) are scanned by priority,
   highest first. Within a policy the first matching statement fixes the
   verdict and the first policy with a verdict decides.
3. Otherwise the caller's permissions are checked; any matching deny wins
   over every matching allow, whatever their priorities.
4. Otherwise access is denied.

Evaluation never raises; internal failures are logged and denied.
"""

import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from shared.config import AuthzSettings, get_settings
from shared.logging import configure_logging, get_logger, user_context
from .matcher import StatementMatcher, principal_candidates
from .models import (
    AuthorizationContext, BatchCheck, BatchEvaluationResult, Effect, EvaluationResult
)
from .patterns import WILDCARD
from .permissions import PermissionStore
from .policies import PolicyStore


class AuthorizationEngine:
    """Combines policies and permissions into allow/deny decisions."""

    def __init__(
        self,
        permission_store: Optional[PermissionStore] = None,
        policy_store: Optional[PolicyStore] = None,
        settings: Optional[AuthzSettings] = None
    ):
        self.settings = settings or AuthzSettings()
        self.logger = get_logger("authz.engine")
        if permission_store is None:
            permission_store = PermissionStore(self.settings.permission_id_prefix)
        if policy_store is None:
            policy_store = PolicyStore(self.settings.policy_id_prefix)
        self.permissions = permission_store
        self.policies = policy_store
        self.matcher = StatementMatcher(
            empty_principals_match_none=self.settings.empty_principals_match_none
        )

    def evaluate(
        self,
        context: AuthorizationContext,
        permission_ids: Iterable[str] = ()
    ) -> EvaluationResult:
        """Decide whether the request in ``context`` is allowed."""
        with user_context(context.user_id, context.tenant_id):
            return self._evaluate(context, list(permission_ids))

    def _evaluate(self, context: AuthorizationContext, permission_ids: List[str]) -> EvaluationResult:
        start_time = time.perf_counter()

        try:
            result = self._decide(context, permission_ids)
        except Exception:
            self.logger.exception(
                "Authorization evaluation error",
                user_id=context.user_id,
                tenant_id=context.tenant_id,
                resource=context.resource,
                action=context.action
            )
            result = EvaluationResult(
                allowed=False,
                reason="Evaluation error",
                denied_by=[]
            )

        result.evaluation_time_ms = max((time.perf_counter() - start_time) * 1000, 0.0)

        self.logger.debug(
            "Authorization decision",
            user_id=context.user_id,
            tenant_id=context.tenant_id,
            resource=context.resource,
            action=context.action,
            allowed=result.allowed,
            decided_by=result.decided_by,
            reason=result.reason,
            evaluation_time_ms=result.evaluation_time_ms
        )
        if result.evaluation_time_ms > self.settings.slow_evaluation_ms:
            self.logger.warning(
                "Slow authorization evaluation",
                tenant_id=context.tenant_id,
                evaluation_time_ms=result.evaluation_time_ms
            )

        return result

    def evaluate_batch(
        self,
        user_id: str,
        tenant_id: Optional[str],
        checks: Sequence[BatchCheck],
        permission_ids: Iterable[str] = (),
        user_attributes: Optional[Dict[str, Any]] = None,
        request_context: Optional[Dict[str, Any]] = None,
        environment: Optional[Dict[str, Any]] = None
    ) -> BatchEvaluationResult:
        """Evaluate several resource/action checks for one principal, in order."""
        start_time = time.perf_counter()
        permission_ids = list(permission_ids)

        with user_context(user_id, tenant_id):
            results = [
                self._evaluate(
                    AuthorizationContext(
                        user_id=user_id,
                        tenant_id=tenant_id,
                        resource=check.resource,
                        action=check.action,
                        resource_id=check.resource_id,
                        resource_attributes=dict(check.resource_attributes),
                        user_attributes=dict(user_attributes or {}),
                        request_context=dict(request_context or {}),
                        environment=dict(environment or {})
                    ),
                    permission_ids
                )
                for check in checks
            ]

        return BatchEvaluationResult(
            results=results,
            total_evaluation_time_ms=max((time.perf_counter() - start_time) * 1000, 0.0)
        )

    def _decide(self, context: AuthorizationContext, permission_ids: List[str]) -> EvaluationResult:
        if WILDCARD in permission_ids:
            return EvaluationResult(
                allowed=True,
                reason="Wildcard permission grants full access",
                decided_by=WILDCARD,
                trace=["wildcard permission present"]
            )

        trace: List[str] = []

        result = self._evaluate_policies(context, permission_ids, trace)
        if result is not None:
            return result

        return self._evaluate_permissions(context, permission_ids, trace)

    def _evaluate_policies(
        self,
        context: AuthorizationContext,
        permission_ids: List[str],
        trace: List[str]
    ) -> Optional[EvaluationResult]:
        candidates = principal_candidates(context.user_id, permission_ids)
        policies = self.policies.eligible(context.tenant_id)
        trace.append(f"{len(policies)} eligible policies")

        for policy in policies:
            for index, statement in enumerate(policy.statements):
                if not self.matcher.matches_statement(statement, context, candidates):
                    continue

                label = statement.sid or f"#{index}"
                trace.append(
                    f"policy {policy.id} statement {label} matched ({statement.effect.value})"
                )

                if statement.effect == Effect.DENY:
                    return EvaluationResult(
                        allowed=False,
                        reason=f"Denied by policy: {policy.name}",
                        decided_by=policy.id,
                        denied_by=[policy.id],
                        trace=trace
                    )
                return EvaluationResult(
                    allowed=True,
                    reason=f"Allowed by policy: {policy.name}",
                    decided_by=policy.id,
                    trace=trace
                )

        return None

    def _evaluate_permissions(
        self,
        context: AuthorizationContext,
        permission_ids: List[str],
        trace: List[str]
    ) -> EvaluationResult:
        permissions = self.permissions.resolve(permission_ids, context.tenant_id)
        matching = [p for p in permissions if self.matcher.matches_permission(p, context)]
        matching.sort(key=lambda p: p.priority, reverse=True)
        trace.append(f"{len(matching)} of {len(permissions)} resolved permissions matched")

        denies = [p.id for p in matching if p.effect == Effect.DENY]
        if denies:
            return EvaluationResult(
                allowed=False,
                reason=f"Denied by permission: {denies[0]}",
                decided_by=denies[0],
                denied_by=denies,
                trace=trace
            )

        allows = [p.id for p in matching if p.effect == Effect.ALLOW]
        if allows:
            return EvaluationResult(
                allowed=True,
                reason="Allowed by permission",
                decided_by=allows[0],
                matching_permissions=allows,
                trace=trace
            )

        return EvaluationResult(
            allowed=False,
            reason="No matching permission found",
            denied_by=[],
            trace=trace
        )


def create_engine(settings: Optional[AuthzSettings] = None) -> AuthorizationEngine:
    """Build the process engine at startup; consumers receive it by reference."""
    settings = settings or get_settings()
    configure_logging(settings.service_name, settings.log_level)
    return AuthorizationEngine(settings=settings)
