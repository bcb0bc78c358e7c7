"""Back-office order routes (listing and fulfillment)."""

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from common.services.errors import InvalidTransition, OrderNotFound, PersistenceConflict
from common.utils.dto import to_order_dto
from common.utils.pagination import DEFAULT_PAGE_SIZE


admin_bp = Blueprint("storefront_admin", __name__, url_prefix="/admin")


def _components() -> dict:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STORE_CONFIG"]


def _is_authenticated() -> bool:
    expected = _config().admin_token
    supplied = request.headers.get("X-Admin-Token", "")
    return bool(expected) and hmac.compare_digest(expected, supplied)


@admin_bp.before_request
def guard_private_routes():
    if not _is_authenticated():
        return jsonify({"error": "Admin access required"}), 403
    return None


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@admin_bp.get("/orders")
def list_orders():
    page = _int_arg("page", 1)
    page_size = _int_arg("page_size", DEFAULT_PAGE_SIZE)
    try:
        rows, total = _components()["order_store"].list_orders(
            status=request.args.get("status") or None,
            country=request.args.get("country") or None,
            page=page,
            page_size=page_size,
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"orders": [to_order_dto(o) for o in rows], "total": total, "page": max(page, 1)})


@admin_bp.post("/orders/<order_id>/fulfillment")
def update_fulfillment(order_id: str):
    payload = request.get_json(silent=True) or request.form.to_dict() or {}
    if not isinstance(payload, dict):
        return jsonify({"error": "request body must be a JSON object"}), 400
    status = str(payload.get("status") or "").strip().lower()
    if not status:
        return jsonify({"error": "status required"}), 400
    try:
        order = _components()["fulfillment"].update(
            order_id,
            status,
            tracking_code=payload.get("tracking_code"),
            tracking_url=payload.get("tracking_url"),
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except OrderNotFound as exc:
        return jsonify({"error": str(exc), "code": exc.code}), 404
    except InvalidTransition as exc:
        return jsonify({"error": str(exc), "code": exc.code}), 409
    except PersistenceConflict as exc:
        return jsonify({"error": str(exc), "code": exc.code}), 503
    return jsonify(to_order_dto(order))
