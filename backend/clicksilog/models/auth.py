from __future__ import annotations

from ..extensions import db
from clicksilog.time_utils import to_utc_z
from .orders import new_document_id


ROLE_ADMIN = "admin"
ROLE_CASHIER = "cashier"
ROLE_KITCHEN = "kitchen"
ROLE_CUSTOMER = "customer"

VALID_ROLES = (ROLE_ADMIN, ROLE_CASHIER, ROLE_KITCHEN, ROLE_CUSTOMER)

# Roles allowed to move orders through the kitchen workflow
STAFF_ROLES = (ROLE_ADMIN, ROLE_CASHIER, ROLE_KITCHEN)


class User(db.Model):
    """
    Staff or customer account.

    Only the role matters to the ordering backend: status changes and
    discount management are authorized by looking the role up here.
    """
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True, default=new_document_id)
    username = db.Column(db.String(64), nullable=False, unique=True)
    display_name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "role": self.role,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }
