# Overview: Compliance policies, rule evaluation, violation tracking and the automated scan.

"""
Compliance Policy Enforcement

WHY: Permission sprawl is invisible until someone looks. Policies describe
what "too much access" means; the scan walks every active user and records
each breach as a ComplianceViolation for review.

POLICY SHAPE:
    rules: [{
        "condition": {"type": ..., "operator": ..., "value": ...},
        "scope": {"holds_any_permission": [...]},     # optional
        "message": "...",                              # optional
    }]

A rule fires when its scope matches (or has none) and its condition holds.
The first firing rule of a policy produces the violation.

ENFORCEMENT (evaluate_action):
- blocking   -> action not allowed
- advisory   -> warning only
- corrective -> logged for follow-up
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from ..extensions import db
from ..models import AuditLog, CompliancePolicy, ComplianceViolation, PropertyAccess, User
from ..permissions import Role, access_level_rank, is_valid_access_level
from ..time_utils import to_utc_z, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import permission_service
from .property_access_service import active_access_filter


logger = logging.getLogger(__name__)

CONDITION_TYPES = ("user_role", "permission_count", "access_level", "time_based")
OPERATORS = ("equals", "not_equals", "greater_than", "less_than", "contains", "not_contains")
POLICY_TYPES = ("access_control", "data_retention", "role_segregation", "audit_requirements", "security_standards")

VIOLATION_TYPES = {
    "access_control": "access_violation",
    "role_segregation": "privilege_escalation",
    "security_standards": "policy_breach",
}

ADMIN_PERMISSIONS = ["system.manage", "system.settings.manage", "system.backup.manage", "users.roles.manage"]

DEFAULT_POLICIES = (
    {
        "name": "Excessive Permissions",
        "description": "Users should not have significantly more permissions than their role requires",
        "policy_type": "access_control",
        "rules": [{
            "condition": {"type": "permission_count", "operator": "greater_than", "value": 50},
            "message": "User has excessive permissions for their role",
        }],
        "enforcement_level": "advisory",
        "priority": "high",
        "compliance_framework": "custom",
    },
    {
        "name": "Administrative Duty Segregation",
        "description": "Administrative permissions should be properly segregated",
        "policy_type": "role_segregation",
        "rules": [{
            "condition": {"type": "user_role", "operator": "not_equals", "value": Role.SUPER_ADMIN},
            "scope": {"holds_any_permission": ADMIN_PERMISSIONS},
            "message": "Administrative permissions held outside the super admin role",
        }],
        "enforcement_level": "blocking",
        "priority": "critical",
        "compliance_framework": "sox",
    },
)


# =============================================================================
# POLICY MANAGEMENT
# =============================================================================

def validate_rules(rules: Any) -> list[dict]:
    if not isinstance(rules, list) or not rules:
        raise ValidationError("rules must be a non-empty list")
    for rule in rules:
        condition = rule.get("condition") if isinstance(rule, dict) else None
        if not isinstance(condition, dict):
            raise ValidationError("Each rule needs a condition object")
        if condition.get("type") not in CONDITION_TYPES:
            raise ValidationError(f"Invalid condition type: {condition.get('type')}")
        if condition.get("operator") not in OPERATORS:
            raise ValidationError(f"Invalid operator: {condition.get('operator')}")
        if "value" not in condition:
            raise ValidationError("Condition value is required")
    return rules


def create_policy(
    *,
    actor_id: int | None,
    name: str,
    policy_type: str,
    rules: list[dict],
    description: str | None = None,
    enforcement_level: str = "advisory",
    priority: str = "medium",
    compliance_framework: str | None = "custom",
    status: str = CompliancePolicy.STATUS_ACTIVE,
) -> CompliancePolicy:
    if not name:
        raise ValidationError("Policy name is required")
    if policy_type not in POLICY_TYPES:
        raise ValidationError(f"Invalid policy type: {policy_type}")
    if enforcement_level not in CompliancePolicy.ENFORCEMENT_LEVELS:
        raise ValidationError(f"Invalid enforcement level: {enforcement_level}")
    if priority not in CompliancePolicy.PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}")
    validate_rules(rules)
    if db.session.query(CompliancePolicy).filter_by(name=name).first() is not None:
        raise ConflictError("A policy with this name already exists")

    policy = CompliancePolicy(
        name=name,
        description=description,
        policy_type=policy_type,
        status=status,
        rules=rules,
        enforcement_level=enforcement_level,
        priority=priority,
        compliance_framework=compliance_framework,
        created_by_user_id=actor_id,
    )
    db.session.add(policy)
    db.session.flush()
    permission_service.log_audit_event(
        user_id=actor_id,
        action="COMPLIANCE_POLICY_CREATED",
        resource="compliance_policy",
        resource_id=policy.id,
        details={
            "policy_name": name,
            "type": policy_type,
            "framework": compliance_framework,
            "enforcement": enforcement_level,
        },
    )
    return policy


def ensure_default_policies() -> int:
    """Create the built-in policies that are missing. Idempotent."""
    existing = {name for (name,) in db.session.query(CompliancePolicy.name).all()}
    created = 0
    for definition in DEFAULT_POLICIES:
        if definition["name"] in existing:
            continue
        db.session.add(CompliancePolicy(status=CompliancePolicy.STATUS_ACTIVE, **definition))
        created += 1
    if created:
        db.session.commit()
    return created


def list_policies(status: str | None = None) -> list[CompliancePolicy]:
    query = db.session.query(CompliancePolicy)
    if status:
        query = query.filter(CompliancePolicy.status == status)
    return query.order_by(CompliancePolicy.name.asc()).all()


def set_policy_status(*, actor_id: int | None, policy_id: int, status: str) -> CompliancePolicy:
    if status not in (CompliancePolicy.STATUS_ACTIVE, CompliancePolicy.STATUS_INACTIVE, CompliancePolicy.STATUS_DRAFT):
        raise ValidationError(f"Invalid policy status: {status}")
    policy = db.session.get(CompliancePolicy, policy_id)
    if policy is None:
        raise NotFoundError("Policy not found")
    previous = policy.status
    policy.status = status
    permission_service.log_audit_event(
        user_id=actor_id,
        action="COMPLIANCE_POLICY_STATUS_CHANGED",
        resource="compliance_policy",
        resource_id=policy.id,
        details={"previous_status": previous, "new_status": status},
    )
    return policy


def get_active_policies() -> list[CompliancePolicy]:
    """Active policies, most urgent first. Falls back to the built-ins when none are stored."""
    policies = list_policies(CompliancePolicy.STATUS_ACTIVE)
    if not policies and not db.session.query(CompliancePolicy.id).first():
        ensure_default_policies()
        policies = list_policies(CompliancePolicy.STATUS_ACTIVE)
    rank = {p: i for i, p in enumerate(CompliancePolicy.PRIORITIES)}
    return sorted(policies, key=lambda p: rank.get(p.priority, 0), reverse=True)


# =============================================================================
# RULE EVALUATION
# =============================================================================

def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """Compare actual against expected. Unknown operators and type mismatches are False."""
    try:
        if operator == "equals":
            return actual == expected
        if operator == "not_equals":
            return actual != expected
        if operator == "greater_than":
            return actual > expected
        if operator == "less_than":
            return actual < expected
        if operator == "contains":
            return str(expected) in str(actual)
        if operator == "not_contains":
            return str(expected) not in str(actual)
    except TypeError:
        return False
    return False


def _access_levels(user_id: int, now: datetime) -> list[str]:
    return [
        level
        for (level,) in db.session.query(PropertyAccess.access_level)
        .filter(PropertyAccess.user_id == user_id, active_access_filter(now))
        .all()
    ]


def _evaluate_access_level(user: User, operator: str, expected: Any, now: datetime) -> bool:
    """
    access_level conditions look at the user's live property access rows.

    contains / not_contains test membership; the remaining operators compare
    the user's highest level by rank.
    """
    levels = _access_levels(user.id, now)
    if operator == "contains":
        return expected in levels
    if operator == "not_contains":
        return expected not in levels
    if not levels or not is_valid_access_level(expected):
        return False
    highest = max(levels, key=access_level_rank)
    if operator in ("equals", "not_equals"):
        return evaluate_condition(highest, operator, expected)
    return evaluate_condition(access_level_rank(highest), operator, access_level_rank(expected))


def evaluate_rule(rule: dict, user: User, now: datetime) -> bool:
    scope = rule.get("scope") or {}
    required_any = scope.get("holds_any_permission")
    if required_any and not permission_service.has_any_permission(user, required_any):
        return False

    condition = rule.get("condition") or {}
    kind = condition.get("type")
    operator = condition.get("operator")
    expected = condition.get("value")

    if kind == "user_role":
        return evaluate_condition(user.role, operator, expected)
    if kind == "permission_count":
        count = len(permission_service.get_explicit_grants(user.id, now))
        return evaluate_condition(count, operator, expected)
    if kind == "access_level":
        return _evaluate_access_level(user, operator, expected, now)
    if kind == "time_based":
        return evaluate_condition(now.hour, operator, expected)
    return False


def severity_for(policy: CompliancePolicy) -> str:
    return policy.priority if policy.priority in ("critical", "high", "medium") else "low"


def violation_type_for(policy: CompliancePolicy) -> str:
    return VIOLATION_TYPES.get(policy.policy_type, "unauthorized_action")


def evaluate_policy_for_user(
    policy: CompliancePolicy,
    user: User,
    now: datetime,
    action: str = "compliance_scan",
    resource: str = "user_permissions",
    context: dict | None = None,
) -> ComplianceViolation | None:
    """
    Record and return a violation for the first rule that fires.

    An open violation for the same policy and user is reused instead of
    opening a duplicate.
    """
    for rule in policy.rules or []:
        if not evaluate_rule(rule, user, now):
            continue

        existing = (
            db.session.query(ComplianceViolation)
            .filter_by(policy_id=policy.id, user_id=user.id, status="open")
            .first()
        )
        if existing is not None:
            return existing

        violation = ComplianceViolation(
            policy_id=policy.id,
            user_id=user.id,
            violation_type=violation_type_for(policy),
            severity=severity_for(policy),
            description=rule.get("message") or f"Policy violation: {policy.name}",
            details={
                "rule": rule,
                "user": {"id": user.id, "role": user.role},
                "action": action,
                "resource": resource,
                "context": context or {},
            },
            status="open",
            detected_at=now,
        )
        db.session.add(violation)
        return violation
    return None


def evaluate_action(
    user_id: int,
    action: str,
    resource: str,
    context: dict | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> dict:
    """
    Check one user action against every active policy.

    Returns {"allowed", "violations", "warnings", "blocked_policies"}.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    now = clock()
    allowed = True
    violations = []
    warnings = []
    blocked = []

    for policy in get_active_policies():
        violation = evaluate_policy_for_user(policy, user, now, action, resource, context)
        if violation is None:
            continue
        violations.append(violation)
        if policy.enforcement_level == "blocking":
            allowed = False
            blocked.append(policy.name)
        elif policy.enforcement_level == "advisory":
            warnings.append(violation.description)
        else:
            logger.info(
                "Corrective action required",
                extra={"policy": policy.name, "user_id": user_id, "violation_type": violation.violation_type},
            )

    permission_service.log_audit_event(
        user_id=user_id,
        action="POLICY_EVALUATION",
        resource="compliance",
        resource_id=f"{action}:{resource}",
        details={
            "action": action,
            "resource": resource,
            "allowed": allowed,
            "violation_count": len(violations),
            "warning_count": len(warnings),
            "blocked_policies": blocked,
        },
    )
    return {
        "allowed": allowed,
        "violations": [v.to_dict() for v in violations],
        "warnings": warnings,
        "blocked_policies": blocked,
    }


# =============================================================================
# SCAN AND REVIEW
# =============================================================================

def perform_compliance_scan(clock: Callable[[], datetime] = utcnow) -> dict:
    """
    Evaluate every active user against every active policy.

    Returns {"scanned_users", "violations_found", "critical_issues", "recommendations"}.
    """
    now = clock()
    users = db.session.query(User).filter(User.is_active.is_(True)).order_by(User.id).all()
    policies = get_active_policies()

    violations_found = 0
    critical_issues = 0
    for user in users:
        for policy in policies:
            violation = evaluate_policy_for_user(policy, user, now)
            if violation is None:
                continue
            violations_found += 1
            if violation.severity == "critical":
                critical_issues += 1

    recommendations = []
    if critical_issues:
        recommendations.append(f"Address {critical_issues} critical compliance issues immediately")
    if violations_found > len(users) * 0.1:
        recommendations.append("Consider updating compliance policies - high violation rate detected")
    recommendations.append("Schedule regular compliance reviews")
    recommendations.append("Implement automated remediation for common violations")

    result = {
        "scanned_users": len(users),
        "violations_found": violations_found,
        "critical_issues": critical_issues,
        "recommendations": recommendations,
    }
    permission_service.log_audit_event(
        user_id=None,
        action="AUTOMATED_COMPLIANCE_SCAN",
        resource="compliance",
        resource_id=to_utc_z(now),
        details=result,
    )
    logger.info(
        "Compliance scan completed",
        extra={"scanned_users": len(users), "violations_found": violations_found, "critical_issues": critical_issues},
    )
    return result


def list_violations(status: str | None = None, user_id: int | None = None, limit: int = 100) -> list[ComplianceViolation]:
    query = db.session.query(ComplianceViolation)
    if status:
        query = query.filter(ComplianceViolation.status == status)
    if user_id is not None:
        query = query.filter(ComplianceViolation.user_id == user_id)
    return query.order_by(ComplianceViolation.detected_at.desc(), ComplianceViolation.id.desc()).limit(limit).all()


def resolve_violation(*, actor_id: int, violation_id: int, status: str = "resolved",
                      notes: str | None = None) -> ComplianceViolation:
    if status not in ("resolved", "dismissed"):
        raise ValidationError(f"Invalid resolution status: {status}")
    violation = db.session.get(ComplianceViolation, violation_id)
    if violation is None:
        raise NotFoundError("Violation not found")
    if violation.status != "open":
        raise ConflictError("Violation is already closed")

    violation.status = status
    violation.resolved_at = utcnow()
    violation.resolved_by_user_id = actor_id
    if notes:
        violation.details = {**(violation.details or {}), "resolution_notes": notes}
    permission_service.log_audit_event(
        user_id=actor_id,
        action="COMPLIANCE_VIOLATION_RESOLVED",
        resource="compliance_violation",
        resource_id=violation.id,
        details={"status": status, "notes": notes},
    )
    return violation


def get_compliance_dashboard() -> dict:
    open_query = db.session.query(ComplianceViolation).filter(ComplianceViolation.status == "open")
    last_scan = (
        db.session.query(AuditLog)
        .filter(AuditLog.action == "AUTOMATED_COMPLIANCE_SCAN")
        .order_by(AuditLog.occurred_at.desc())
        .first()
    )
    return {
        "active_violations": open_query.count(),
        "critical_violations": open_query.filter(ComplianceViolation.severity == "critical").count(),
        "policies_count": db.session.query(CompliancePolicy)
        .filter(CompliancePolicy.status == CompliancePolicy.STATUS_ACTIVE)
        .count(),
        "last_scan_at": to_utc_z(last_scan.occurred_at) if last_scan else None,
        "recent_violations": [v.to_dict() for v in list_violations(limit=10)],
    }
