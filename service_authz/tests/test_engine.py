"""
Unit tests for the authorization engine.
"""

import pytest

from shared.config import AuthzSettings
from shared.errors import AuthorizationError
from shared.logging import tenant_id_var, user_id_var
from service_authz.app.rules import conditions
from service_authz.app.rules.engine import AuthorizationEngine, create_engine
from service_authz.app.rules.models import AuthorizationContext, BatchCheck
from service_authz.app.rules.permissions import PermissionStore
from service_authz.app.rules.policies import PolicyStore


def allow_all(**overrides):
    statement = {"effect": "allow", "actions": ["*"], "resources": ["*"]}
    statement.update(overrides)
    return statement


class TestAuthorizationEngine:
    """Test cases for AuthorizationEngine.evaluate."""

    @pytest.fixture
    def engine(self):
        """Create AuthorizationEngine instance."""
        return AuthorizationEngine(settings=AuthzSettings())

    @pytest.fixture
    def context(self):
        """Create authorization context."""
        return AuthorizationContext(
            user_id="u1",
            tenant_id="t1",
            resource="documents",
            action="read"
        )

    def test_injected_empty_stores_kept(self, context):
        """Test empty injected stores are used, not replaced."""
        permissions = PermissionStore()
        policies = PolicyStore()

        engine = AuthorizationEngine(
            permission_store=permissions,
            policy_store=policies,
            settings=AuthzSettings()
        )
        permissions.create({"id": "p", "name": "Read docs", "resource": "documents", "actions": ["read"]})

        assert engine.permissions is permissions
        assert engine.policies is policies
        result = engine.evaluate(context, ["p"])
        assert result.allowed is True
        assert result.decided_by == "p"

        policies.create({"id": "deny", "name": "Deny", "tenantId": "t1",
                         "statements": [allow_all(effect="deny")]})

        assert engine.evaluate(context, ["p"]).decided_by == "deny"

    def test_default_deny(self, engine, context):
        """Test nothing configured denies access."""
        result = engine.evaluate(context, [])

        assert result.allowed is False
        assert result.reason == "No matching permission found"
        assert result.denied_by == []
        assert result.decided_by is None
        assert result.evaluation_time_ms >= 0

    def test_wildcard_permission(self, engine, context):
        """Test the '*' permission short-circuits to allow."""
        engine.policies.create({"name": "Deny all", "statements": [allow_all(effect="deny")],
                                "tenantId": "t1"})

        result = engine.evaluate(context, ["*"])

        assert result.allowed is True
        assert result.reason == "Wildcard permission grants full access"
        assert result.decided_by == "*"

    def test_scenario_allow_all_policy(self, engine, context):
        """Test an allow-all tenant policy allows access."""
        policy = engine.policies.create({"name": "Allow all", "statements": [allow_all()],
                                         "tenantId": "t1"})

        result = engine.evaluate(context, [])

        assert result.allowed is True
        assert result.decided_by == policy.id
        assert result.reason == "Allowed by policy: Allow all"

    def test_scenario_higher_priority_deny(self, engine, context):
        """Test a higher-priority deny policy defeats a lower-priority allow."""
        engine.policies.create({"id": "A", "name": "Allow all", "priority": 0,
                                "statements": [allow_all()], "tenantId": "t1"})
        engine.policies.create({"id": "B", "name": "No deletes", "priority": 10,
                                "statements": [allow_all(effect="deny", actions=["delete"])],
                                "tenantId": "t1"})

        context.action = "delete"
        result = engine.evaluate(context, [])

        assert result.allowed is False
        assert result.decided_by == "B"
        assert result.denied_by == ["B"]
        assert result.reason == "Denied by policy: No deletes"

        context.action = "read"
        assert engine.evaluate(context, []).decided_by == "A"

    def test_scenario_permission_deny_wins(self, engine, context):
        """Test a deny permission defeats an allow permission."""
        engine.permissions.create({"id": "perm-deny", "name": "Deny", "resource": "documents",
                                   "actions": ["read"], "effect": "deny", "tenantId": "t1"})
        engine.permissions.create({"id": "perm-allow", "name": "Allow", "resource": "documents",
                                   "actions": ["read"], "tenantId": "t1"})

        result = engine.evaluate(context, ["perm-allow", "perm-deny"])

        assert result.allowed is False
        assert result.decided_by == "perm-deny"
        assert result.denied_by == ["perm-deny"]
        assert result.reason == "Denied by permission: perm-deny"

    def test_permission_deny_ignores_priority(self, engine, context):
        """Test deny wins even when the allow has a higher priority."""
        engine.permissions.create({"id": "perm-deny", "name": "Deny", "resource": "documents",
                                   "actions": ["read"], "effect": "deny", "priority": -100})
        engine.permissions.create({"id": "perm-allow", "name": "Allow", "resource": "documents",
                                   "actions": ["read"], "priority": 100})

        assert engine.evaluate(context, ["perm-allow", "perm-deny"]).allowed is False

    def test_scenario_owner_condition(self, engine, context):
        """Test a condition comparing resource owner to the user."""
        engine.policies.create({
            "name": "Owners",
            "tenantId": "t1",
            "statements": [allow_all(conditions=[{
                "field": "resourceAttributes.ownerId",
                "operator": "equals",
                "value": "${userId}",
                "isVariable": True
            }])]
        })
        context.resource_attributes = {"ownerId": "u1"}

        assert engine.evaluate(context, []).allowed is True

        context.user_id = "u2"
        assert engine.evaluate(context, []).allowed is False

    def test_scenario_delete_falls_back_to_deny(self, engine, context):
        """Test deleting the only policy restores default deny."""
        policy = engine.policies.create({"name": "Allow all", "statements": [allow_all()],
                                         "tenantId": "t1"})
        assert engine.evaluate(context, []).allowed is True

        engine.policies.delete(policy.id)
        result = engine.evaluate(context, [])

        assert result.allowed is False
        assert result.reason == "No matching permission found"

    def test_statement_order(self, engine, context):
        """Test the first matching statement in a policy decides."""
        engine.policies.create({
            "id": "policy-1",
            "name": "Deny then allow",
            "tenantId": "t1",
            "statements": [
                allow_all(effect="deny", actions=["delete"]),
                allow_all(),
            ]
        })

        context.action = "delete"
        assert engine.evaluate(context, []).allowed is False

        context.action = "read"
        assert engine.evaluate(context, []).allowed is True

    def test_statement_order_allow_first(self, engine, context):
        """Test an earlier allow statement is not overridden by a later deny."""
        engine.policies.create({
            "name": "Allow then deny",
            "tenantId": "t1",
            "statements": [allow_all(), allow_all(effect="deny")]
        })

        assert engine.evaluate(context, []).allowed is True

    def test_policy_before_permissions(self, engine, context):
        """Test a matching policy decides before permissions are consulted."""
        engine.policies.create({"id": "deny-docs", "name": "Deny docs", "tenantId": "t1",
                                "statements": [allow_all(effect="deny", resources=["documents"])]})
        engine.permissions.create({"id": "perm-allow", "name": "Allow", "resource": "documents",
                                   "actions": ["read"]})

        result = engine.evaluate(context, ["perm-allow"])

        assert result.allowed is False
        assert result.decided_by == "deny-docs"

    def test_inactive_policy_skipped(self, engine, context):
        """Test inactive policies never decide."""
        engine.policies.create({"name": "Off", "isActive": False, "statements": [allow_all()],
                                "tenantId": "t1"})

        assert engine.evaluate(context, []).allowed is False

    def test_tenant_scoping(self, engine, context):
        """Test other tenants' policies never apply while global ones do."""
        engine.policies.create({"name": "Other tenant", "statements": [allow_all()], "tenantId": "t2"})
        assert engine.evaluate(context, []).allowed is False

        engine.policies.create({"id": "global", "name": "Global", "statements": [allow_all()]})
        assert engine.evaluate(context, []).decided_by == "global"

    def test_permissions_collected(self, engine, context):
        """Test all matching allow permissions are reported, highest priority first."""
        engine.permissions.create({"id": "p-low", "name": "Low", "resource": "documents",
                                   "actions": ["read"], "priority": 1})
        engine.permissions.create({"id": "p-high", "name": "High", "resource": "*",
                                   "actions": ["*"], "priority": 5})
        engine.permissions.create({"id": "p-other", "name": "Other", "resource": "projects",
                                   "actions": ["read"]})

        result = engine.evaluate(context, ["p-low", "p-high", "p-other"])

        assert result.allowed is True
        assert result.reason == "Allowed by permission"
        assert result.decided_by == "p-high"
        assert result.matching_permissions == ["p-high", "p-low"]

    def test_other_tenant_permission_ignored(self, engine, context):
        """Test permissions scoped to another tenant do not grant access."""
        engine.permissions.create({"id": "p", "name": "P", "resource": "documents",
                                   "actions": ["read"], "tenantId": "t2"})

        assert engine.evaluate(context, ["p"]).allowed is False

    def test_unknown_permission_ids(self, engine, context):
        """Test unresolvable permission ids are dropped."""
        assert engine.evaluate(context, ["non-existent-perm"]).allowed is False

    def test_principal_by_permission_id(self, engine, context):
        """Test statements can target permission or role ids held by the caller."""
        engine.policies.create({"name": "Editors", "tenantId": "t1",
                                "statements": [allow_all(principals=["role-editor"])]})

        assert engine.evaluate(context, []).allowed is False
        assert engine.evaluate(context, ["role-editor"]).allowed is True

    def test_empty_principals_observed_behaviour(self, engine, context):
        """Test an explicit empty principals list matches everyone by default."""
        engine.policies.create({"name": "Empty", "tenantId": "t1",
                                "statements": [allow_all(principals=[])]})

        assert engine.evaluate(context, []).allowed is True

    def test_empty_principals_strict_setting(self, context):
        """Test the strict setting makes an empty principals list match nobody."""
        engine = AuthorizationEngine(settings=AuthzSettings(empty_principals_match_none=True))
        engine.policies.create({"name": "Empty", "tenantId": "t1",
                                "statements": [allow_all(principals=[])]})

        assert engine.evaluate(context, []).allowed is False

    def test_idempotent(self, engine, context):
        """Test repeated evaluations give the same decision."""
        engine.policies.create({"id": "p", "name": "P", "tenantId": "t1", "statements": [allow_all()]})

        first = engine.evaluate(context, [])
        second = engine.evaluate(context, [])

        assert (first.allowed, first.decided_by) == (second.allowed, second.decided_by)

    def test_evaluation_does_not_mutate_store(self, engine, context):
        """Test evaluation leaves stored policies untouched."""
        policy = engine.policies.create({"name": "P", "tenantId": "t1", "statements": [allow_all()]})

        engine.evaluate(context, [])

        assert engine.policies.get_by_id(policy.id) is policy

    def test_internal_error_denies(self, engine, context, monkeypatch):
        """Test unexpected failures fail closed."""
        engine.policies.create({"name": "P", "tenantId": "t1", "statements": [allow_all()]})

        def boom(*args, **kwargs):
            raise RuntimeError("matcher failure")

        monkeypatch.setattr(engine.matcher, "matches_statement", boom)

        result = engine.evaluate(context, [])

        assert result.allowed is False
        assert result.reason == "Evaluation error"
        assert result.evaluation_time_ms >= 0

    def test_trace(self, engine, context):
        """Test the decision trace names the matching statement."""
        engine.policies.create({"id": "p", "name": "P", "tenantId": "t1",
                                "statements": [allow_all(sid="everything")]})

        result = engine.evaluate(context, [])

        assert "policy p statement everything matched (allow)" in result.trace

    def test_resource_id(self, engine, context):
        """Test statements match resource instances."""
        engine.policies.create({"name": "Docs", "tenantId": "t1",
                                "statements": [allow_all(actions=["read"], resources=["documents:*"])]})
        context.resource_id = "123"

        assert engine.evaluate(context, []).allowed is True

    def test_raise_for_denied(self, engine, context):
        """Test denied results raise a generic AuthorizationError."""
        result = engine.evaluate(context, [])

        with pytest.raises(AuthorizationError) as exc_info:
            result.raise_for_denied()

        assert exc_info.value.message == "Access denied"
        assert exc_info.value.details["reason"] == "No matching permission found"
        assert engine.evaluate(context, ["*"]).raise_for_denied() is None

    def test_to_dict(self, engine, context):
        """Test results serialize to plain data."""
        data = engine.evaluate(context, ["*"]).to_dict()

        assert data["allowed"] is True
        assert data["decided_by"] == "*"
        assert "evaluation_time_ms" in data


class TestBatchEvaluation:
    """Test cases for AuthorizationEngine.evaluate_batch."""

    @pytest.fixture
    def engine(self):
        """Create engine with a read-only documents policy."""
        engine = AuthorizationEngine(settings=AuthzSettings())
        engine.policies.create({"name": "Read docs", "tenantId": "t1",
                                "statements": [allow_all(actions=["read"], resources=["documents"])]})
        return engine

    def test_results_in_order(self, engine):
        """Test each check gets its own result, in order."""
        batch = engine.evaluate_batch(
            user_id="u1",
            tenant_id="t1",
            checks=[
                BatchCheck(resource="documents", action="read"),
                BatchCheck(resource="documents", action="delete"),
                BatchCheck(resource="documents", action="read", resource_id="9"),
            ]
        )

        assert [r.allowed for r in batch.results] == [True, False, True]
        assert batch.all_allowed is False
        assert batch.total_evaluation_time_ms >= 0

    def test_shared_permissions(self, engine):
        """Test permission ids apply to every check."""
        batch = engine.evaluate_batch(
            user_id="u1",
            tenant_id="t1",
            checks=[BatchCheck(resource="projects", action="write")],
            permission_ids=["*"]
        )

        assert batch.all_allowed is True

    def test_attributes_reach_conditions(self, engine):
        """Test batch-level attributes are visible to conditions."""
        engine.policies.create({"name": "Finance", "tenantId": "t1", "priority": 1,
                                "statements": [allow_all(
                                    resources=["reports"],
                                    conditions=[{"field": "userAttributes.department",
                                                 "operator": "equals", "value": "finance"}]
                                )]})

        batch = engine.evaluate_batch(
            user_id="u1",
            tenant_id="t1",
            checks=[BatchCheck(resource="reports", action="read")],
            user_attributes={"department": "finance"}
        )

        assert batch.all_allowed is True


class TestLoggingContext:
    """Test cases for the log context bound during evaluation."""

    @pytest.fixture
    def seen(self):
        """Register an operator recording the bound log context."""
        seen = []

        def record(field_value, compare_value):
            seen.append((user_id_var.get(), tenant_id_var.get()))
            return True

        conditions.register_operator("recordContext", record)
        yield seen
        conditions._OPERATORS.pop("recordContext", None)

    @pytest.fixture
    def engine(self, seen):
        """Create engine whose policy condition runs the recording operator."""
        engine = AuthorizationEngine(settings=AuthzSettings())
        engine.policies.create({"name": "Recorded", "tenantId": "t1", "statements": [allow_all(
            conditions=[{"field": "userId", "operator": "recordContext"}]
        )]})
        return engine

    def test_evaluate_binds_principal(self, engine, seen):
        """Test user and tenant are bound while evaluating and cleared after."""
        context = AuthorizationContext(user_id="u1", tenant_id="t1", resource="documents", action="read")

        assert engine.evaluate(context, []).allowed is True
        assert seen == [("u1", "t1")]
        assert user_id_var.get() is None
        assert tenant_id_var.get() is None

    def test_batch_binds_principal(self, engine, seen):
        """Test every batch check runs with the principal bound."""
        engine.evaluate_batch(
            user_id="u2",
            tenant_id="t1",
            checks=[BatchCheck(resource="documents", action="read"),
                    BatchCheck(resource="reports", action="read")]
        )

        assert seen == [("u2", "t1"), ("u2", "t1")]
        assert user_id_var.get() is None


class TestCreateEngine:
    """Test cases for create_engine."""

    def test_uses_settings(self):
        """Test the factory wires settings through."""
        settings = AuthzSettings(policy_id_prefix="pol", permission_id_prefix="grant")

        engine = create_engine(settings)

        assert engine.settings is settings
        assert engine.policies.create({"name": "P", "statements": [allow_all()]}).id.startswith("pol_")
        assert engine.permissions.create(
            {"name": "G", "resource": "*", "actions": ["*"]}
        ).id.startswith("grant_")
