"""
Reservation ledger: storage of booking attempts and their outcomes.

Nothing here decides whether a booking may happen. Uniqueness of confirmed
reservations is enforced by the `uq_reservations_slot_confirmed` index and
interpreted by services.engine.
"""

from sqlalchemy import exists, update

from models import db
from models.reservation import Reservation, RESERVATION_CONFIRMED, RESERVATION_CANCELLED


def append(reservation: Reservation) -> Reservation:
    # flush so the store's constraints fire here (IntegrityError propagates)
    db.session.add(reservation)
    db.session.flush()
    return reservation


def get(reservation_id: int) -> Reservation | None:
    return db.session.get(Reservation, reservation_id)


def mark_cancelled(reservation_id: int, actor_id: int, when) -> bool:
    """
    confirmed -> cancelled, only if the row is still confirmed.
    Returns False when another transaction got there first.
    """
    result = db.session.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status == RESERVATION_CONFIRMED)
        .values(status=RESERVATION_CANCELLED, cancelled_at=when, cancelled_by=actor_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def has_confirmed(slot_id: int) -> bool:
    return db.session.query(
        exists().where(
            Reservation.slot_id == slot_id,
            Reservation.status == RESERVATION_CONFIRMED,
        )
    ).scalar()


def confirmed_for_slot(slot_id: int) -> Reservation | None:
    return Reservation.query.filter_by(slot_id=slot_id, status=RESERVATION_CONFIRMED).first()


def for_slot(slot_id: int):
    # oldest first: the booking history of one slot
    return (
        Reservation.query
        .filter_by(slot_id=slot_id)
        .order_by(Reservation.created_at.asc(), Reservation.id.asc())
    )


def for_student(student_id: int, status: str = None):
    q = Reservation.query.filter_by(student_id=student_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Reservation.created_at.desc(), Reservation.id.desc())


def for_provider(provider_id: int, status: str = None):
    q = Reservation.query.filter_by(provider_id=provider_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Reservation.created_at.desc(), Reservation.id.desc())


def all_reservations(status: str = None):
    q = Reservation.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Reservation.created_at.desc(), Reservation.id.desc())
