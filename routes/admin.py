from flask import Blueprint, jsonify, request

from models.reservation import RESERVATION_CONFIRMED, RESERVATION_CANCELLED
from security.rbac import require_roles, ROLE_ADMIN
from services import ledger

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/reservations")
@require_roles(ROLE_ADMIN)
def list_all_reservations():
    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in (RESERVATION_CONFIRMED, RESERVATION_CANCELLED):
        return jsonify(error="status must be confirmed or cancelled"), 400

    rows = ledger.all_reservations(status=status).limit(200).all()
    return jsonify([r.to_dict() for r in rows]), 200
