from flask import Blueprint, request, jsonify, g

from models.reservation import RESERVATION_CONFIRMED, RESERVATION_CANCELLED
from security.rbac import Actor, require_roles, ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT
from services import engine, ledger
from services.errors import ConflictError, NotFoundError, ValidationError
from utils.audit import log_event
from utils.auth_context import login_required, current_actor

reservations_bp = Blueprint("reservations", __name__, url_prefix="/reservations")


def _status_filter():
    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in (RESERVATION_CONFIRMED, RESERVATION_CANCELLED):
        raise ValidationError("status must be confirmed or cancelled")
    return status


def _can_view(actor, reservation) -> bool:
    return actor.role == ROLE_ADMIN or actor.id in (reservation.student_id, reservation.provider_id)


# ---------- STUDENTS: book a slot (double-booking safe) ----------
@reservations_bp.post("")
@require_roles(ROLE_STUDENT)
def create_reservation():
    data = request.get_json(silent=True) or {}
    slot_id = data.get("slot_id")
    if not isinstance(slot_id, int) or isinstance(slot_id, bool):
        raise ValidationError("slot_id required")

    try:
        # book as a student even when the user also holds a higher role
        reservation = engine.book(slot_id, Actor(g.user.id, ROLE_STUDENT), data.get("notes"))
    except ConflictError:
        log_event("RESERVATION_FAIL_ALREADY_BOOKED", user_id=g.user.id, entity="slot", entity_id=slot_id)
        raise

    log_event(
        "RESERVATION_CREATE",
        user_id=g.user.id,
        entity="reservation",
        entity_id=reservation.id,
        metadata={"slot_id": slot_id},
    )
    return jsonify(reservation.to_dict()), 201


@reservations_bp.post("/<int:reservation_id>/cancel")
@login_required
def cancel_reservation(reservation_id: int):
    reservation = engine.cancel(reservation_id, current_actor())

    log_event(
        "RESERVATION_CANCEL",
        user_id=g.user.id,
        entity="reservation",
        entity_id=reservation_id,
        metadata={"slot_id": reservation.slot_id, "by_admin": reservation.student_id != g.user.id},
    )
    return jsonify(reservation.to_dict()), 200


@reservations_bp.get("/<int:reservation_id>")
@login_required
def get_reservation(reservation_id: int):
    reservation = ledger.get(reservation_id)
    if reservation is None or not _can_view(current_actor(), reservation):
        raise NotFoundError("Reservation not found")
    return jsonify(reservation.to_dict()), 200


@reservations_bp.get("")
@login_required
def reservations_for_slot():
    # re-query after a timed out book/cancel before retrying
    slot_id = request.args.get("slot_id", type=int)
    if not slot_id:
        raise ValidationError("slot_id is required")

    actor = current_actor()
    rows = [r for r in ledger.for_slot(slot_id) if _can_view(actor, r)]
    return jsonify([r.to_dict() for r in rows]), 200


@reservations_bp.get("/me")
@require_roles(ROLE_STUDENT)
def my_reservations():
    rows = ledger.for_student(g.user.id, status=_status_filter())
    return jsonify([_with_slot(r) for r in rows]), 200


@reservations_bp.get("/provider")
@require_roles(ROLE_FACULTY)
def provider_reservations():
    rows = ledger.for_provider(g.user.id, status=_status_filter())
    return jsonify([_with_slot(r) for r in rows]), 200


def _with_slot(reservation):
    out = reservation.to_dict()
    slot = reservation.slot
    out["slot"] = {
        "start_time": slot.start_time.isoformat(),
        "end_time": slot.end_time.isoformat(),
    } if slot else None
    return out
