from __future__ import annotations

from ..extensions import db
from ..money import as_json_number
from clicksilog.time_utils import to_utc_z


class Discount(db.Model):
    """
    Discount code applied at checkout.

    type "percentage": value is a percent of the subtotal, capped by max_discount.
    type "fixed": value is pesos off, never more than the subtotal.
    Codes are stored upper-case and matched case-insensitively.
    """
    __tablename__ = "discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)

    type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    value = db.Column(db.Numeric(10, 2), nullable=False)
    min_order = db.Column(db.Numeric(10, 2), nullable=True)
    max_discount = db.Column(db.Numeric(10, 2), nullable=True)

    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    valid_from = db.Column(db.DateTime, nullable=True)
    valid_until = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "value": as_json_number(self.value),
            "minOrder": as_json_number(self.min_order),
            "maxDiscount": as_json_number(self.max_discount),
            "active": self.active,
            "validFrom": to_utc_z(self.valid_from),
            "validUntil": to_utc_z(self.valid_until),
        }
