from datetime import datetime
import sqlalchemy as sa
from models.db import db

RESERVATION_CONFIRMED = "confirmed"
RESERVATION_CANCELLED = "cancelled"


class Reservation(db.Model):
    __tablename__ = "reservations"

    id = db.Column(db.Integer, primary_key=True)

    slot_id = db.Column(
        db.Integer, db.ForeignKey("slots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # copied from the slot at creation time
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=RESERVATION_CONFIRMED)
    # status values: confirmed, cancelled (terminal)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    slot = db.relationship("Slot", back_populates="reservations")

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('confirmed', 'cancelled')", name="ck_reservation_status"
        ),
        # Hard business rule: at most one CONFIRMED reservation per slot.
        # Cancelled rows are outside the index so a slot can be rebooked.
        db.Index(
            "uq_reservations_slot_confirmed",
            "slot_id",
            unique=True,
            sqlite_where=sa.text("status = 'confirmed'"),
            postgresql_where=sa.text("status = 'confirmed'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "provider_id": self.provider_id,
            "student_id": self.student_id,
            "notes": self.notes,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
        }
