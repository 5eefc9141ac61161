"""Admin dashboard routes for order management."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session

from storefront.errors import ValidationError


admin_bp = Blueprint("storefront_admin", __name__, url_prefix="/admin")


def _components() -> dict:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STOREFRONT_CONFIG"]


def _is_authenticated() -> bool:
    return bool(session.get("is_admin"))


@admin_bp.before_request
def guard_private_routes():
    if request.endpoint and request.endpoint.startswith("storefront_admin."):
        public = {"storefront_admin.login"}
        if request.endpoint not in public and not _is_authenticated():
            return jsonify({"success": False, "error": "Unauthorized - Admin access required"}), 401
    return None


@admin_bp.post("/login")
def login():
    body = request.get_json(silent=True) or request.form
    username = (body.get("username") or "").strip()
    password = (body.get("password") or "").strip()
    cfg = _config()
    if username == cfg.admin_username and password == cfg.admin_password:
        session["is_admin"] = True
        return jsonify({"success": True})
    return jsonify({"success": False, "error": "Invalid username or password"}), 401


@admin_bp.post("/logout")
def logout():
    session.pop("is_admin", None)
    return jsonify({"success": True})


@admin_bp.get("/orders")
def list_orders():
    data = _components()["order_service"].list_orders(
        status=request.args.get("status") or None,
        search=request.args.get("search") or None,
        page=request.args.get("page", 1),
        page_size=request.args.get("page_size", 20),
    )
    return jsonify({"success": True, **data})


@admin_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    order = _components()["order_service"].get_order(order_id)
    return jsonify({"success": True, "order": order})


@admin_bp.get("/orders/<order_id>/history")
def order_history(order_id: str):
    events = _components()["status_service"].history(order_id)
    return jsonify({"success": True, "history": events})


@admin_bp.patch("/orders/<order_id>/status")
def update_status(order_id: str):
    body = request.get_json(silent=True) or {}
    status = body.get("status")
    if not status:
        raise ValidationError("Status is required")
    notes = body.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    result = _components()["status_service"].transition(order_id, status, notes)
    return jsonify(
        {
            "success": True,
            "message": f"Order status updated to {result['status']}",
            "order": result,
        }
    )


@admin_bp.put("/orders/<order_id>/receipt")
def attach_receipt(order_id: str):
    body = request.get_json(silent=True) or {}
    result = _components()["order_service"].attach_receipt(order_id, (body.get("receiptRef") or "").strip())
    return jsonify({"success": True, **result})


@admin_bp.delete("/orders/<order_id>")
def delete_order(order_id: str):
    result = _components()["order_service"].delete_order(order_id)
    return jsonify({"success": True, "message": "Order deleted successfully", **result})
