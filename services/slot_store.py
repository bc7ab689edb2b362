from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import delete, exists

from models import db
from models.slot import Slot
from models.reservation import Reservation, RESERVATION_CONFIRMED
from security.rbac import Actor, ROLE_FACULTY
from services.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.notifier import ChangeEvent, SLOT_CREATED, SLOT_DELETED, publish


def slot_duration() -> timedelta:
    return timedelta(minutes=current_app.config.get("SLOT_DURATION_MINUTES", 15))


def to_utc_naive(value: datetime) -> datetime:
    # slots are stored as naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def day_range(day):
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def _held():
    return exists().where(
        Reservation.slot_id == Slot.id,
        Reservation.status == RESERVATION_CONFIRMED,
    )


def get_slot(slot_id: int) -> Slot:
    slot = db.session.get(Slot, slot_id)
    if slot is None:
        raise NotFoundError("Slot not found")
    return slot


def create_slot(provider: Actor, start_time: datetime) -> Slot:
    if provider.role != ROLE_FACULTY:
        raise AuthorizationError("Only faculty can publish slots")
    if not isinstance(start_time, datetime):
        raise ValidationError("start_time must be a datetime")

    start_time = to_utc_naive(start_time)
    if start_time <= datetime.utcnow():
        raise ValidationError("Cannot create slots in the past")

    slot = Slot(
        provider_id=provider.id,
        start_time=start_time,
        end_time=start_time + slot_duration(),
        is_booked=False,
    )
    db.session.add(slot)
    db.session.commit()

    publish(ChangeEvent(SLOT_CREATED, slot_id=slot.id, provider_id=slot.provider_id))
    return slot


def delete_slot(slot_id: int, requester: Actor) -> None:
    slot = get_slot(slot_id)
    if slot.provider_id != requester.id:
        raise AuthorizationError("Only the slot's provider can delete it")
    provider_id = slot.provider_id

    # loaded now so callers still holding these rows can read them afterwards
    history = Reservation.query.filter_by(slot_id=slot_id).all()

    # The confirmed-reservation check and the delete are one statement, so a
    # booking that commits first makes this a no-op instead of orphaning it.
    # Cancelled history goes with the slot (ON DELETE CASCADE).
    result = db.session.execute(
        delete(Slot)
        .where(Slot.id == slot_id, ~_held())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        if db.session.get(Slot, slot_id) is None:
            raise NotFoundError("Slot not found")
        raise ConflictError("Cannot delete a booked slot")

    # the rows are gone from the database, detach their in-session copies
    for reservation in history:
        if reservation in db.session:
            db.session.expunge(reservation)
    db.session.expunge(slot)
    db.session.commit()

    publish(ChangeEvent(SLOT_DELETED, slot_id=slot_id, provider_id=provider_id))


def list_slots(provider_id: int, start: datetime = None, end: datetime = None, booked: bool = None):
    """
    Slots of one provider with start in [start, end), earliest first.

    Returns an unevaluated query: iterating it runs the SELECT, iterating it
    again re-runs it against current data. The booked filter is evaluated
    against reservation rows rather than the cached flag.
    """
    q = Slot.query.filter(Slot.provider_id == provider_id)
    if start is not None:
        q = q.filter(Slot.start_time >= to_utc_naive(start))
    if end is not None:
        q = q.filter(Slot.start_time < to_utc_naive(end))
    if booked is not None:
        q = q.filter(_held() if booked else ~_held())
    return q.order_by(Slot.start_time.asc(), Slot.id.asc())
