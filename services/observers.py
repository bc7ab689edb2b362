"""
Built-in change observers: in-app notifications and confirmation emails.

Both run after the booking transaction has committed and only re-read state
by id, so a failure here can delay a message but never undo a booking.
"""

import logging

from models import db
from models.notification import Notification
from models.reservation import Reservation
from models.slot import Slot
from models.user import User
from services.notifier import RESERVATION_CANCELLED, RESERVATION_CONFIRMED, WILDCARD
from utils.emailer import email_configured, send_email

logger = logging.getLogger(__name__)


def _when(slot: Slot) -> str:
    return slot.start_time.strftime("%b %d, %Y at %H:%M UTC")


def _display_name(user: User) -> str:
    if user is None:
        return "Unknown user"
    return user.full_name or user.email


def _load(event):
    reservation = db.session.get(Reservation, event.reservation_id)
    if reservation is None:
        return None, None, None, None
    slot = db.session.get(Slot, reservation.slot_id)
    student = db.session.get(User, reservation.student_id)
    provider = db.session.get(User, reservation.provider_id)
    return reservation, slot, student, provider


def in_app_notifications(event):
    if event.kind not in (RESERVATION_CONFIRMED, RESERVATION_CANCELLED):
        return

    reservation, slot, student, provider = _load(event)
    if reservation is None or slot is None:
        return
    when = _when(slot)

    if event.kind == RESERVATION_CONFIRMED:
        rows = [
            Notification(
                user_id=reservation.student_id,
                title="Appointment Confirmed!",
                message=f"Your booking with {_display_name(provider)} for {when} is confirmed.",
                type="booking",
                reservation_id=reservation.id,
            ),
            Notification(
                user_id=reservation.provider_id,
                title="New Booking",
                message=f"You have a new appointment with {_display_name(student)} on {when}.",
                type="booking",
                reservation_id=reservation.id,
            ),
        ]
    else:
        rows = [
            Notification(
                user_id=reservation.student_id,
                title="Appointment Cancelled",
                message=f"Your appointment with {_display_name(provider)} on {when} was cancelled.",
                type="cancellation",
                reservation_id=reservation.id,
            ),
            Notification(
                user_id=reservation.provider_id,
                title="Booking Cancelled",
                message=f"The appointment with {_display_name(student)} on {when} was cancelled.",
                type="cancellation",
                reservation_id=reservation.id,
            ),
        ]

    db.session.add_all(rows)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def confirmation_emails(event):
    if event.kind != RESERVATION_CONFIRMED or not email_configured():
        return

    reservation, slot, student, provider = _load(event)
    if reservation is None or slot is None or student is None or provider is None:
        return

    when = _when(slot)
    minutes = int((slot.end_time - slot.start_time).total_seconds() // 60)
    notes = reservation.notes or "None"
    messages = [
        (
            student.email,
            f"Appointment Confirmed: {_display_name(provider)}",
            (
                f"Hi {_display_name(student)},\n\n"
                f"Your {minutes}-minute consultation with {_display_name(provider)} is confirmed.\n"
                f"Time: {when}\n"
                f"Notes: {notes}\n"
                f"Reservation: #{reservation.id}\n\n"
                "Thank you!"
            ),
        ),
        (
            provider.email,
            f"New Appointment Booked: {_display_name(student)}",
            (
                "A new consultation has been booked with you.\n\n"
                f"Student: {_display_name(student)} ({student.email})\n"
                f"Time: {when}\n"
                f"Student Notes: {notes}\n"
                f"Reservation: #{reservation.id}"
            ),
        ),
    ]

    failures = []
    for to_email, subject, body in messages:
        sent, error = send_email(to_email, subject, body)
        if not sent:
            failures.append(f"{to_email}: {error}")

    if failures:
        # raising makes the notifier retry this observer
        raise RuntimeError("Confirmation email failed: " + "; ".join(failures))
    logger.info("Sent confirmation emails for reservation %s", reservation.id)


def register_default_observers(notifier):
    notifier.subscribe(WILDCARD, in_app_notifications)
    notifier.subscribe(WILDCARD, confirmation_emails)
