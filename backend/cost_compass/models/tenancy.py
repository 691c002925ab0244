from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Property(db.Model):
    """
    Property (hotel/restaurant site): the data isolation boundary.

    WHY: Every financial row belongs to a property, directly or through an
    outlet. Callers see only properties they hold PropertyAccess on,
    unless they are super_admin.
    """
    __tablename__ = "properties"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    property_code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    property_type = db.Column(db.String(32), nullable=False, default="hotel")
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Property id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "property_code": self.property_code,
            "property_type": self.property_type,
            "owner_id": self.owner_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Outlet(db.Model):
    """Revenue outlet (restaurant, bar, banquet) inside a property."""
    __tablename__ = "outlets"
    __table_args__ = (
        db.UniqueConstraint("property_id", "name", name="uq_outlets_property_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    outlet_code = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    property = db.relationship("Property", backref=db.backref("outlets", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "outlet_code": self.outlet_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PropertyAccess(db.Model):
    """
    Per-user access level on one property.

    INVARIANTS:
    - At most one row per (user, property)
    - access_level is one of read_only, data_entry, management,
      full_control, owner
    - A row past expires_at grants nothing, even before cleanup deletes it
      (every read goes through property_access_service.active_access_filter)
    """
    __tablename__ = "property_access"
    __table_args__ = (
        db.UniqueConstraint("user_id", "property_id", name="uq_property_access_user_property"),
        db.Index("ix_property_access_user", "user_id"),
        db.Index("ix_property_access_property", "property_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False)
    access_level = db.Column(db.String(32), nullable=False)
    granted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    granted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("property_access", lazy=True))
    property = db.relationship("Property", backref=db.backref("access_grants", lazy=True))
    granted_by = db.relationship("User", foreign_keys=[granted_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "property_id": self.property_id,
            "access_level": self.access_level,
            "granted_by_user_id": self.granted_by_user_id,
            "granted_at": to_utc_z(self.granted_at),
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
        }
