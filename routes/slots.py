from datetime import date, datetime

from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles, ROLE_FACULTY
from services import slot_store
from services.errors import ValidationError
from utils.audit import log_event
from utils.auth_context import login_required, current_actor

slots_bp = Blueprint("slots", __name__, url_prefix="/slots")


def parse_iso(dt_str, field: str) -> datetime:
    # Expect ISO format like "2026-01-20T18:00:00" (naive means UTC)
    if not isinstance(dt_str, str) or not dt_str.strip():
        raise ValidationError(f"{field} is required")
    value = dt_str.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use ISO e.g. 2026-01-20T18:00:00")


def _parse_bool(value: str, field: str):
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be true or false")


@slots_bp.post("")
@require_roles(ROLE_FACULTY)
def create_slot():
    data = request.get_json(silent=True) or {}
    start_time = parse_iso(data.get("start_time"), "start_time")

    slot = slot_store.create_slot(current_actor(), start_time)

    log_event("SLOT_CREATE", user_id=g.user.id, entity="slot", entity_id=slot.id)
    return jsonify(slot.to_dict()), 201


@slots_bp.delete("/<int:slot_id>")
@login_required
def delete_slot(slot_id: int):
    slot_store.delete_slot(slot_id, current_actor())

    log_event("SLOT_DELETE", user_id=g.user.id, entity="slot", entity_id=slot_id)
    return jsonify(message="Slot deleted"), 200


@slots_bp.get("")
@login_required
def list_slots():
    # filters: provider_id (required), date (YYYY-MM-DD) or start/end, booked
    provider_id = request.args.get("provider_id", type=int)
    if not provider_id:
        raise ValidationError("provider_id is required")

    start = end = None
    date_str = request.args.get("date")
    if date_str:
        try:
            day = date.fromisoformat(date_str)
        except ValueError:
            raise ValidationError("Invalid date. Use YYYY-MM-DD")
        start, end = slot_store.day_range(day)
    else:
        if request.args.get("start"):
            start = parse_iso(request.args.get("start"), "start")
        if request.args.get("end"):
            end = parse_iso(request.args.get("end"), "end")

    booked = _parse_bool(request.args.get("booked"), "booked")

    slots = slot_store.list_slots(provider_id, start=start, end=end, booked=booked)
    return jsonify([s.to_dict() for s in slots]), 200
