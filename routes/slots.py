from flask import Blueprint, request, jsonify, g

from security.rbac import require_admin
from services import slot_store

slots_bp = Blueprint("slots", __name__)


# ---------- PUBLIC: availability ----------
@slots_bp.get("/time-slots")
def list_available():
    center_id = request.args.get("center_id", type=int)
    day = request.args.get("date")
    if not center_id or not day:
        return jsonify(error="center_id and date are required"), 400

    slots = slot_store.list_available(center_id, day)
    return jsonify([s.to_dict() for s in slots]), 200


# ---------- ADMIN: scheduling ----------
@slots_bp.get("/admin/time-slots")
@require_admin
def list_admin():
    slots = slot_store.list_admin(
        center_id=request.args.get("center_id", type=int),
        day=request.args.get("date"),
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
    )
    return jsonify([s.to_dict(admin=True) for s in slots]), 200


@slots_bp.post("/admin/time-slots")
@require_admin
def create_slot():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("center_id", "date", "start_time", "end_time") if not data.get(k)]
    if missing:
        return jsonify(error=f"Missing fields: {', '.join(missing)}"), 400

    slot = slot_store.create_slot(
        data["center_id"],
        data["date"],
        data["start_time"],
        data["end_time"],
        capacity=data.get("capacity", 1),
        price=data.get("price", 0),
        actor_id=g.user.id,
    )
    return jsonify(slot.to_dict(admin=True)), 201


@slots_bp.post("/admin/time-slots/bulk")
@require_admin
def create_bulk():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("center_id", "start_date", "end_date") if not data.get(k)]
    if missing:
        return jsonify(error=f"Missing fields: {', '.join(missing)}"), 400
    templates = data.get("time_slots")
    if not isinstance(templates, list):
        return jsonify(error="time_slots must be a list"), 400

    summary = slot_store.create_bulk(
        data["center_id"],
        data["start_date"],
        data["end_date"],
        templates,
        skip_weekends=bool(data.get("skip_weekends", True)),
        actor_id=g.user.id,
    )
    return jsonify(summary), 201


@slots_bp.get("/admin/time-slots/<int:slot_id>")
@require_admin
def get_slot(slot_id):
    return jsonify(slot_store.get_slot(slot_id).to_dict(admin=True)), 200


@slots_bp.patch("/admin/time-slots/<int:slot_id>")
@require_admin
def update_slot(slot_id):
    data = request.get_json(silent=True) or {}
    slot = slot_store.update_slot(slot_id, data, actor_id=g.user.id)
    return jsonify(slot.to_dict(admin=True)), 200


@slots_bp.delete("/admin/time-slots/<int:slot_id>")
@require_admin
def delete_slot(slot_id):
    return jsonify(slot_store.delete_slot(slot_id, actor_id=g.user.id)), 200
