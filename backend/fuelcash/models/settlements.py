from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import money_to_str


class Settlement(db.Model):
    """
    Daily cash reconciliation for one station/date.

    A station may record several settlements per date (one per shift or
    re-count). At most one of them is final; the partial unique index
    below holds that line in the store itself.

    Expected amounts come from the linked readings at creation time and
    never change afterwards. Variance is always expected - actual and is
    computed server-side.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.Index("ix_settlements_station_date", "station_id", "settlement_date"),
        db.Index(
            "uq_settlements_final_per_day",
            "station_id",
            "settlement_date",
            unique=True,
            sqlite_where=db.text("is_final = 1"),
            postgresql_where=db.text("is_final"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    settlement_date = db.Column(db.Date, nullable=False)

    # Derived from linked readings (immutable after insert)
    expected_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expected_online = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expected_credit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expected_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    litres_total = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    reading_count = db.Column(db.Integer, nullable=False, default=0)

    # Employee-reported split, kept for comparison only
    reported_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    reported_online = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    reported_credit = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Entered by the reconciler
    actual_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    actual_online = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    actual_credit = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # expected - actual (positive = shortfall)
    variance_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    variance_online = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    variance_credit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    variance_status = db.Column(db.String(16), nullable=False, default="matched", index=True)  # matched, disputed

    notes = db.Column(db.Text, nullable=True)

    is_final = db.Column(db.Boolean, nullable=False, default=False, index=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    station = db.relationship("Station", backref=db.backref("settlements", lazy=True))
    recorded_by = db.relationship("User", foreign_keys=[recorded_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "settlement_date": to_iso_date(self.settlement_date),
            "expected": {
                "cash": money_to_str(self.expected_cash),
                "online": money_to_str(self.expected_online),
                "credit": money_to_str(self.expected_credit),
                "total": money_to_str(self.expected_total),
            },
            "reported": {
                "cash": money_to_str(self.reported_cash),
                "online": money_to_str(self.reported_online),
                "credit": money_to_str(self.reported_credit),
            },
            "actual": {
                "cash": money_to_str(self.actual_cash),
                "online": money_to_str(self.actual_online),
                "credit": money_to_str(self.actual_credit),
            },
            "variance": {
                "cash": money_to_str(self.variance_cash),
                "online": money_to_str(self.variance_online),
                "credit": money_to_str(self.variance_credit),
            },
            "variance_status": self.variance_status,
            "litres_total": str(self.litres_total),
            "reading_count": self.reading_count,
            "notes": self.notes,
            "is_final": self.is_final,
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "recorded_by_user_id": self.recorded_by_user_id,
            "recorded_at": to_utc_z(self.recorded_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
