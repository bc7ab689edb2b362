from datetime import datetime
from models.db import db

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    # advisory cache of "a confirmed reservation references this slot";
    # the reservations table is the source of truth
    is_booked = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    reservations = db.relationship(
        "Reservation",
        back_populates="slot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_slot_interval"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_booked": self.is_booked,
        }
