from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    """
    Cost category (e.g. Meat, Wine). property_id NULL means a global category
    visible to every property.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    category_type = db.Column(db.String(16), nullable=False, default="food")  # food | beverage
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category_type": self.category_type,
            "property_id": self.property_id,
        }


class FinancialEntry(db.Model):
    """
    One day's cost entry for an outlet. Scoped to a property through its outlet.
    Amounts are stored in minor units (cents).
    """
    __tablename__ = "financial_entries"
    __table_args__ = (
        db.Index("ix_financial_entries_outlet_date", "outlet_id", "entry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    entry_date = db.Column(db.Date, nullable=False)
    entry_type = db.Column(db.String(16), nullable=False, default="food")  # food | beverage
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    outlet = db.relationship("Outlet", backref=db.backref("financial_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "category_id": self.category_id,
            "entry_date": self.entry_date.isoformat() if self.entry_date else None,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class DailyFinancialSummary(db.Model):
    """Per-property daily revenue and cost totals."""
    __tablename__ = "daily_financial_summaries"
    __table_args__ = (
        db.UniqueConstraint("property_id", "summary_date", name="uq_daily_summary_property_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    summary_date = db.Column(db.Date, nullable=False)
    food_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    beverage_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    food_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    beverage_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "summary_date": self.summary_date.isoformat() if self.summary_date else None,
            "food_revenue_cents": self.food_revenue_cents,
            "beverage_revenue_cents": self.beverage_revenue_cents,
            "food_cost_cents": self.food_cost_cents,
            "beverage_cost_cents": self.beverage_cost_cents,
            "created_at": to_utc_z(self.created_at),
        }
