from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import money_to_str


# Custody chain stages, in order.
SHIFT_COLLECTION = "shift_collection"
EMPLOYEE_TO_MANAGER = "employee_to_manager"
MANAGER_TO_OWNER = "manager_to_owner"
BANK_DEPOSIT = "bank_deposit"

HANDOVER_SEQUENCE = (SHIFT_COLLECTION, EMPLOYEE_TO_MANAGER, MANAGER_TO_OWNER, BANK_DEPOSIT)

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_DISPUTED = "disputed"

HANDOVER_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_DISPUTED)


class CashHandover(db.Model):
    """
    One hop of physical cash custody.

    CHAIN: shift_collection -> employee_to_manager -> manager_to_owner -> bank_deposit.
    Each hop points back at the confirmed hop it continues through
    previous_handover_id. The unique constraint on that column is what
    keeps the chain one-to-one when two successors race for the same
    predecessor.

    LIFECYCLE:
    - pending: waiting for the recipient
    - confirmed: amount accepted (within tolerance)
    - disputed: amount outside tolerance; terminal, blocks the chain
    """
    __tablename__ = "cash_handovers"
    __table_args__ = (
        db.UniqueConstraint("previous_handover_id", name="uq_cash_handovers_previous"),
        db.Index("ix_cash_handovers_station_type_status", "station_id", "handover_type", "status"),
        db.Index("ix_cash_handovers_station_date", "station_id", "handover_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    handover_type = db.Column(db.String(32), nullable=False, index=True)
    handover_date = db.Column(db.Date, nullable=False)

    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    expected_amount = db.Column(db.Numeric(12, 2), nullable=False)
    actual_amount = db.Column(db.Numeric(12, 2), nullable=True)  # Set on confirmation
    variance = db.Column(db.Numeric(12, 2), nullable=True)  # expected - actual

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    previous_handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Bank deposit details
    bank_name = db.Column(db.String(100), nullable=True)
    deposit_reference = db.Column(db.String(50), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    dispute_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    station = db.relationship("Station", backref=db.backref("cash_handovers", lazy=True))
    previous_handover = db.relationship("CashHandover", remote_side=[id], uselist=False)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "handover_type": self.handover_type,
            "handover_date": to_iso_date(self.handover_date),
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "expected_amount": money_to_str(self.expected_amount),
            "actual_amount": money_to_str(self.actual_amount),
            "variance": money_to_str(self.variance),
            "status": self.status,
            "previous_handover_id": self.previous_handover_id,
            "settlement_id": self.settlement_id,
            "created_by_user_id": self.created_by_user_id,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "bank_name": self.bank_name,
            "deposit_reference": self.deposit_reference,
            "notes": self.notes,
            "dispute_notes": self.dispute_notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
