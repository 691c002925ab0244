from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PermissionTemplate(db.Model):
    """
    Named, reusable permission bundle.

    Applying a template resolves into ordinary RolePermission,
    UserPermission or property-user grants; the template itself carries
    no runtime authority.
    """
    __tablename__ = "permission_templates"
    __table_args__ = {"sqlite_autoincrement": True}

    TYPE_ROLE = "role_template"
    TYPE_PROPERTY = "property_template"
    TYPE_DEPARTMENT = "department_template"
    TYPES = (TYPE_ROLE, TYPE_PROPERTY, TYPE_DEPARTMENT)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    template_type = db.Column(db.String(32), nullable=False, default=TYPE_ROLE)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    conditions = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "template_type": self.template_type,
            "permissions": list(self.permissions or []),
            "conditions": self.conditions,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PermissionDelegation(db.Model):
    """
    Time-boxed, revocable re-grant of one user's permissions to another.

    property_id NULL means the delegation adds to the delegatee's global
    permission set; otherwise it only applies on that property.
    """
    __tablename__ = "permission_delegations"
    __table_args__ = (
        db.Index("ix_permission_delegations_to_active", "delegated_to_user_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delegated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    delegated_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=True, index=True)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    reason = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    delegated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    delegated_by = db.relationship("User", foreign_keys=[delegated_by_user_id])
    delegated_to = db.relationship("User", foreign_keys=[delegated_to_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delegated_by_user_id": self.delegated_by_user_id,
            "delegated_to_user_id": self.delegated_to_user_id,
            "property_id": self.property_id,
            "permissions": list(self.permissions or []),
            "reason": self.reason,
            "is_active": self.is_active,
            "delegated_at": to_utc_z(self.delegated_at),
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
            "revoked_by_user_id": self.revoked_by_user_id,
        }


class CompliancePolicy(db.Model):
    """
    Stored compliance rule set evaluated by the periodic scan.

    rules: list of {"condition": {"type", "operator", "value"}, "action"}.
    Policies are advisory at request time; the scan only records violations.
    """
    __tablename__ = "compliance_policies"
    __table_args__ = {"sqlite_autoincrement": True}

    STATUS_ACTIVE = "active"
    STATUS_INACTIVE = "inactive"
    STATUS_DRAFT = "draft"

    ENFORCEMENT_LEVELS = ("advisory", "blocking", "corrective")
    PRIORITIES = ("low", "medium", "high", "critical")

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    policy_type = db.Column(db.String(32), nullable=False)  # access_control | role_segregation | ...
    status = db.Column(db.String(16), nullable=False, default=STATUS_ACTIVE, index=True)
    rules = db.Column(db.JSON, nullable=False, default=list)
    enforcement_level = db.Column(db.String(16), nullable=False, default="advisory")
    priority = db.Column(db.String(16), nullable=False, default="medium")
    compliance_framework = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "policy_type": self.policy_type,
            "status": self.status,
            "rules": list(self.rules or []),
            "enforcement_level": self.enforcement_level,
            "priority": self.priority,
            "compliance_framework": self.compliance_framework,
            "created_at": to_utc_z(self.created_at),
        }


class ComplianceViolation(db.Model):
    """One policy breach found by a scan."""
    __tablename__ = "compliance_violations"
    __table_args__ = (
        db.Index("ix_compliance_violations_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    policy_id = db.Column(db.Integer, db.ForeignKey("compliance_policies.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    violation_type = db.Column(db.String(32), nullable=False)
    severity = db.Column(db.String(16), nullable=False)
    description = db.Column(db.Text, nullable=False)
    details = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="open")  # open | resolved | dismissed

    detected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    policy = db.relationship("CompliancePolicy", backref=db.backref("violations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "policy_id": self.policy_id,
            "policy_name": self.policy.name if self.policy else None,
            "user_id": self.user_id,
            "violation_type": self.violation_type,
            "severity": self.severity,
            "description": self.description,
            "details": self.details,
            "status": self.status,
            "detected_at": to_utc_z(self.detected_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
