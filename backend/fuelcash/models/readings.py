from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import money_to_str


class Reading(db.Model):
    """
    Meter reading for one nozzle on one business date.

    APPEND-ONLY: readings are never deleted. The only field that changes
    after insert is settlement_id, written by the settlement engine.

    total_amount (litres x price on the reading date) is authoritative for
    settlement math. The cash/online/credit split is what the employee
    reported and is informational only.
    """
    __tablename__ = "readings"
    __table_args__ = (
        db.Index("ix_readings_station_date", "station_id", "reading_date"),
        db.Index("ix_readings_nozzle_date", "nozzle_id", "reading_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=False, index=True)
    entered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    reading_date = db.Column(db.Date, nullable=False)
    reading_value = db.Column(db.Numeric(14, 3), nullable=False)
    previous_reading = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    litres_sold = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    price_per_litre = db.Column(db.Numeric(12, 2), nullable=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    cash_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    online_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_initial_reading = db.Column(db.Boolean, nullable=False, default=False)

    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    nozzle = db.relationship("Nozzle", backref=db.backref("readings", lazy=True))
    settlement = db.relationship("Settlement", backref=db.backref("readings", lazy=True))

    def to_dict(self, *, include_settlement: bool = False) -> dict:
        data = {
            "id": self.id,
            "station_id": self.station_id,
            "nozzle_id": self.nozzle_id,
            "entered_by_user_id": self.entered_by_user_id,
            "reading_date": to_iso_date(self.reading_date),
            "reading_value": str(self.reading_value),
            "previous_reading": str(self.previous_reading),
            "litres_sold": str(self.litres_sold),
            "price_per_litre": money_to_str(self.price_per_litre),
            "total_amount": money_to_str(self.total_amount),
            "cash_amount": money_to_str(self.cash_amount),
            "online_amount": money_to_str(self.online_amount),
            "credit_amount": money_to_str(self.credit_amount),
            "is_initial_reading": self.is_initial_reading,
            "settlement_id": self.settlement_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_settlement:
            settlement = self.settlement
            data["linked_settlement"] = {
                "id": settlement.id,
                "settlement_date": to_iso_date(settlement.settlement_date),
                "is_final": settlement.is_final,
            } if settlement else None
        return data
