"""
Consistency engine: the only writer of Reservation.status and Slot.is_booked.

Per slot the state is derived from the reservation rows:
    OPEN  - no confirmed reservation
    HELD  - exactly one confirmed reservation

book() moves OPEN -> HELD and cancel() moves HELD -> OPEN, any number of
times; each cycle creates a new reservation row and leaves the previous one
cancelled for good.

book() never asks "is the slot free?" before writing. It inserts a confirmed
row straight away and lets the partial unique index
`uq_reservations_slot_confirmed` (UNIQUE(slot_id) WHERE status='confirmed')
pick the winner: of N concurrent callers exactly one commits, the rest get
an IntegrityError which is reported as ConflictError. Slot.is_booked is a
read-side cache only and is never consulted for that decision.
"""

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import exists, update
from sqlalchemy.exc import IntegrityError

from models import db
from models.slot import Slot
from models.user import User
from models.reservation import Reservation, RESERVATION_CONFIRMED, RESERVATION_CANCELLED
from security.rbac import Actor, ROLE_ADMIN, ROLE_STUDENT
from services import ledger
from services.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.notifier import (
    ChangeEvent,
    RESERVATION_CONFIRMED as EVENT_CONFIRMED,
    RESERVATION_CANCELLED as EVENT_CANCELLED,
    publish,
)

logger = logging.getLogger(__name__)

SLOT_OPEN = "OPEN"
SLOT_HELD = "HELD"


def _clean_notes(notes):
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    notes = notes.strip()
    if not notes:
        return None
    max_len = current_app.config.get("NOTES_MAX_LENGTH", 1000)
    if len(notes) > max_len:
        raise ValidationError(f"notes must be at most {max_len} characters")
    return notes


def slot_state(slot_id: int) -> str:
    return SLOT_HELD if ledger.has_confirmed(slot_id) else SLOT_OPEN


def book(slot_id: int, student: Actor, notes: str = None) -> Reservation:
    if student.role != ROLE_STUDENT:
        raise AuthorizationError("Only students can book slots")
    notes = _clean_notes(notes)

    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise NotFoundError("Slot not found")
    if slot.start_time <= datetime.utcnow():
        raise ValidationError("Cannot book past/started slots")

    reservation = Reservation(
        slot_id=slot.id,
        provider_id=slot.provider_id,
        student_id=student.id,
        notes=notes,
        status=RESERVATION_CONFIRMED,
    )

    try:
        ledger.append(reservation)
        slot.is_booked = True
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        # a slot deleted under us fails the foreign key, not the unique index
        if db.session.get(Slot, slot_id) is None:
            raise NotFoundError("Slot not found")
        # so does an actor id with no user row behind it
        if db.session.get(User, student.id) is None:
            raise ValidationError("Unknown student")
        logger.info("Booking conflict on slot %s for student %s", slot_id, student.id)
        raise ConflictError("slot already booked")

    publish(ChangeEvent(
        EVENT_CONFIRMED,
        slot_id=reservation.slot_id,
        provider_id=reservation.provider_id,
        reservation_id=reservation.id,
        student_id=reservation.student_id,
    ))
    return reservation


def cancel(reservation_id: int, actor: Actor) -> Reservation:
    """
    Cancel a confirmed reservation. Allowed for the reservation's student and
    for administrators.

    Cancelling a reservation that is already cancelled raises ConflictError,
    whether it was cancelled earlier or by a concurrent call that won.
    """
    reservation = ledger.get(reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found")

    if actor.role != ROLE_ADMIN and reservation.student_id != actor.id:
        raise AuthorizationError("Not allowed to cancel this reservation")

    if reservation.status == RESERVATION_CANCELLED:
        raise ConflictError("reservation already cancelled")

    slot_id = reservation.slot_id
    if not ledger.mark_cancelled(reservation.id, actor.id, datetime.utcnow()):
        db.session.rollback()
        raise ConflictError("reservation already cancelled")

    refresh_booked_flag(slot_id)
    db.session.commit()

    publish(ChangeEvent(
        EVENT_CANCELLED,
        slot_id=slot_id,
        provider_id=reservation.provider_id,
        reservation_id=reservation.id,
        student_id=reservation.student_id,
    ))
    return reservation


def refresh_booked_flag(slot_id: int) -> bool:
    """Recompute one slot's cached flag from the ledger (caller commits)."""
    held = ledger.has_confirmed(slot_id)
    db.session.execute(
        update(Slot)
        .where(Slot.id == slot_id)
        .values(is_booked=held)
        .execution_options(synchronize_session=False)
    )
    slot = db.session.get(Slot, slot_id)
    if slot is not None:
        db.session.expire(slot, ["is_booked"])
    return held


def reconcile_booked_flags() -> int:
    """Rewrite every stale Slot.is_booked from reservation rows. Returns rows fixed."""
    held = exists().where(
        Reservation.slot_id == Slot.id,
        Reservation.status == RESERVATION_CONFIRMED,
    )
    set_true = db.session.execute(
        update(Slot)
        .where(Slot.is_booked.is_(False), held)
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    set_false = db.session.execute(
        update(Slot)
        .where(Slot.is_booked.is_(True), ~held)
        .values(is_booked=False)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return set_true.rowcount + set_false.rowcount
