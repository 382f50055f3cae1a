"""
Rules engine package.

Decides allow/deny for a request by combining two rule systems: ordered,
statement-based policies evaluated first, and flat permissions used as a
fallback. Anything left undecided is denied.

Modules of interest:
- models: Entities, administrative inputs, request context and results.
- patterns: Action/resource pattern grammar, parsed at creation time.
- conditions: Condition operators and context path lookup.
- matcher: Statement and permission predicates shared by both passes.
- policies / permissions: Tenant-filtered in-memory stores.
- engine: The evaluation algorithm.

The stores are authoritative in memory and expose bulk_import/export so a
durable store can seed and mirror them.
"""

from .engine import AuthorizationEngine, create_engine
from .models import (
    AuthorizationContext, BatchCheck, BatchEvaluationResult, Condition,
    ConditionOperator, Effect, EvaluationResult, Permission, Policy, Statement
)
from .permissions import PermissionStore
from .policies import PolicyStore

__all__ = [
    "AuthorizationEngine",
    "create_engine",
    "AuthorizationContext",
    "BatchCheck",
    "BatchEvaluationResult",
    "Condition",
    "ConditionOperator",
    "Effect",
    "EvaluationResult",
    "Permission",
    "Policy",
    "Statement",
    "PermissionStore",
    "PolicyStore",
]
