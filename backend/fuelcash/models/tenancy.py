from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import money_to_str


class Organization(db.Model):
    """
    Multi-tenant root: every fuel business is an Organization.

    All stations and users belong to exactly one organization.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Station(db.Model):
    """
    Fuel station within an organization.

    Each station has at most one manager and one owner. They are the
    auto-assigned recipients of cash handovers.
    """
    __tablename__ = "stations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_stations_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    manager_user_id = db.Column(db.Integer, db.ForeignKey("users.id", use_alter=True, name="fk_stations_manager_user_id"), nullable=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id", use_alter=True, name="fk_stations_owner_user_id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("stations", lazy=True))
    manager = db.relationship("User", foreign_keys=[manager_user_id])
    owner = db.relationship("User", foreign_keys=[owner_user_id])

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "manager_user_id": self.manager_user_id,
            "owner_user_id": self.owner_user_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Nozzle(db.Model):
    """Dispensing nozzle; readings are captured per nozzle."""
    __tablename__ = "nozzles"
    __table_args__ = (
        db.UniqueConstraint("station_id", "nozzle_number", name="uq_nozzles_station_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    nozzle_number = db.Column(db.Integer, nullable=False)
    fuel_type = db.Column(db.String(32), nullable=False)  # petrol, diesel, ...
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    station = db.relationship("Station", backref=db.backref("nozzles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "nozzle_number": self.nozzle_number,
            "fuel_type": self.fuel_type,
            "is_active": self.is_active,
        }


class FuelPrice(db.Model):
    """
    Price per litre for a fuel type, valid from a date until superseded.
    """
    __tablename__ = "fuel_prices"
    __table_args__ = (
        db.UniqueConstraint("station_id", "fuel_type", "effective_from", name="uq_fuel_prices_station_fuel_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(32), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    effective_from = db.Column(db.Date, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "fuel_type": self.fuel_type,
            "price": money_to_str(self.price),
            "effective_from": to_iso_date(self.effective_from),
        }
