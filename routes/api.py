"""Storefront API routes: cart, merge, checkout and order lookup."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request, session

from storefront.errors import ValidationError
from storefront.identity import new_session_token, resolve_owner


api_bp = Blueprint("storefront_api", __name__, url_prefix="/api")

GUEST_COOKIE = "guest_session_id"
GUEST_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


def _components() -> Dict[str, Any]:
    return current_app.extensions["storefront_components"]


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON in request body")
    return payload


def _guest_token() -> str:
    token = getattr(g, "guest_token", None)
    if token:
        return token
    token = request.cookies.get(GUEST_COOKIE)
    if not token:
        token = new_session_token()
        g.new_guest_token = token
    g.guest_token = token
    return token


def current_owner():
    """Signed-in account when the auth layer put one in the session, else the guest cookie."""
    account_id = session.get("account_id")
    if account_id:
        return resolve_owner(account_id=account_id)
    return resolve_owner(session_token=_guest_token())


@api_bp.after_app_request
def persist_guest_cookie(response):
    token = getattr(g, "new_guest_token", None)
    if token:
        response.set_cookie(
            GUEST_COOKIE,
            token,
            max_age=GUEST_COOKIE_MAX_AGE,
            httponly=True,
            samesite="Lax",
            secure=request.is_secure,
            path="/",
        )
    return response


# -----------------
# Cart
# -----------------
@api_bp.get("/cart")
def get_cart():
    cart = _components()["cart_service"].get_cart(current_owner())
    return jsonify({"success": True, "cart": cart})


@api_bp.post("/cart/add")
def add_to_cart():
    body = _json_body()
    product_id = str(body.get("productId") or body.get("product_id") or "").strip()
    quantity = body.get("quantity")
    if not product_id or quantity is None:
        raise ValidationError("Product ID and quantity are required")
    attributes = body.get("selectedAttributes", body.get("attributes"))
    result = _components()["cart_service"].add_line(current_owner(), product_id, quantity, attributes)
    return jsonify({"success": True, "lineId": result["line_id"], "cart": result["cart"]})


@api_bp.put("/cart/update")
def update_cart_line():
    body = _json_body()
    line_id = str(body.get("cartItemId") or body.get("line_id") or "").strip()
    quantity = body.get("quantity")
    if not line_id or quantity is None:
        raise ValidationError("Cart item ID and quantity are required")
    result = _components()["cart_service"].update_quantity(current_owner(), line_id, quantity)
    return jsonify({"success": True, "status": result["status"], "cart": result["cart"]})


@api_bp.delete("/cart/remove")
def remove_cart_line():
    body = request.get_json(silent=True) or {}
    line_id = str(body.get("cartItemId") or body.get("line_id") or request.args.get("cartItemId") or "").strip()
    if not line_id:
        raise ValidationError("Cart item ID is required")
    result = _components()["cart_service"].remove_line(current_owner(), line_id)
    return jsonify({"success": True, "status": result["status"]})


@api_bp.post("/cart/merge")
def merge_cart():
    account_id = session.get("account_id")
    if not account_id:
        return jsonify({"success": False, "error": "User not authenticated"}), 401
    body = request.get_json(silent=True) or {}
    guest_token = body.get("guestSessionId") or request.cookies.get(GUEST_COOKIE)
    if not guest_token:
        raise ValidationError("Guest session ID is required")
    result = _components()["merge_service"].merge(guest_token, account_id)
    cart = _components()["cart_service"].get_cart(resolve_owner(account_id=account_id))
    return jsonify({"success": True, "merge": result, "cart": cart})


# -----------------
# Orders
# -----------------
@api_bp.post("/orders")
def create_order():
    result = _components()["order_service"].create_order(current_owner(), _json_body())
    return jsonify({"success": True, "order": result}), 201


@api_bp.get("/orders")
def list_my_orders():
    owner = current_owner()
    data = _components()["order_service"].list_orders(
        owner=owner,
        page=request.args.get("page", 1),
        page_size=request.args.get("page_size", 20),
    )
    return jsonify({"success": True, **data})


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    order = _components()["order_service"].get_order(order_id, owner=current_owner())
    return jsonify({"success": True, "order": order})


@api_bp.get("/verify/<code>")
def verify_receipt(code: str):
    order = _components()["order_service"].get_order_by_verification_code(code)
    public = {
        k: order[k]
        for k in ("order_number", "status", "payment_status", "total_amount", "currency", "created_at", "lines")
    }
    return jsonify({"success": True, "order": public})


@api_bp.get("/regions")
def list_regions():
    regions = _components()["regions"]
    return jsonify(
        {
            "success": True,
            "regions": [
                {"name": name, "agents": [a.to_dict() for a in regions.agents_for(name)]}
                for name in regions.regions
            ],
        }
    )
