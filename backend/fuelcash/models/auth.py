from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ROLE_EMPLOYEE = "employee"
ROLE_MANAGER = "manager"
ROLE_OWNER = "owner"
ROLE_SUPER_ADMIN = "super_admin"

ROLES = (ROLE_EMPLOYEE, ROLE_MANAGER, ROLE_OWNER, ROLE_SUPER_ADMIN)


class User(db.Model):
    """
    Back-office user.

    Credentials live with the external identity provider; this table only
    carries what attribution and recipient resolution need.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True, index=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_EMPLOYEE, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "station_id": self.station_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
