# Overview: Flask API routes for checkout and order management; parses input and returns JSON responses.

"""Order API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import current_actor, require_permission, resolve_caller
from ..errors import CheckoutError, ValidationError
from ..services import checkout_service, order_service, payment_service, permission_service
from ..services.checkout_service import CheckoutRequest
from ..services.order_service import OrderQuery
from ..services.permission_service import get_permission_cache
from ..validation import clean_str, parse_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _error(e: CheckoutError):
    return jsonify({"error": e.message, "details": e.details}), e.status_code


@orders_bp.post("")
@resolve_caller
def create_order_route():
    """
    Checkout: turn the caller's cart (or explicit items) into an order.

    Open to signed-in customers and guests (X-Session-Id).
    Callers with a role need orders.create; guests carry no role.
    Idempotency-Key header or idempotency_key body field makes retries safe.
    """
    try:
        if g.role is not None:
            permission_service.require_permission(g.role, "orders.create")

        data = request.get_json(silent=True)
        checkout_request = CheckoutRequest.from_payload(
            data,
            customer_id=g.user_id,
            session_id=g.session_id,
            idempotency_key=clean_str(request.headers.get("Idempotency-Key"), "Idempotency-Key"),
        )

        order = checkout_service.place_order(checkout_request)

        if order.replayed:
            return jsonify({"order": order.to_dict(), "replayed": True}), 200

        payment = payment_service.initiate_payment(order)
        return jsonify({"order": order.to_dict(), "payment": payment}), 201

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/my-orders")
@resolve_caller
@require_permission("orders.view_own")
def my_orders_route():
    """
    Paginated order history of the signed-in customer.

    Requires: orders.view_own permission
    """
    if g.user_id is None:
        return jsonify({"error": "Authentication required"}), 401

    try:
        page = parse_int(request.args.get("page", 1), "page", minimum=1)
        limit = parse_int(request.args.get("limit", 10), "limit", minimum=1, maximum=order_service.MAX_PAGE_LIMIT)
        result = order_service.list_customer_orders(g.user_id, page=page, limit=limit)
        return jsonify(result.to_dict()), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list customer orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@resolve_caller
def get_order_route(order_id: int):
    """
    Single order with items.

    Callers with orders.view see any order; everyone else only their own.
    """
    if g.role is None:
        return jsonify({"error": "Authentication required"}), 401

    try:
        if get_permission_cache().has_permission(g.role, "orders.view"):
            order = order_service.get_order(order_id)
        elif g.user_id is None:
            return jsonify({"error": "Authentication required"}), 401
        else:
            order = order_service.get_order(order_id, customer_id=g.user_id)
        return jsonify({"order": order.to_dict()}), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@resolve_caller
@require_permission("orders.view")
def list_orders_route():
    """
    Admin listing: status/payment_status filters, search, sorting, pagination.

    Requires: orders.view permission
    """
    try:
        customer_id = request.args.get("customer_id")
        if customer_id is not None:
            customer_id = parse_int(customer_id, "customer_id", minimum=1)
        query = OrderQuery.from_args(request.args, customer_id=customer_id)
        return jsonify(order_service.list_orders(query).to_dict()), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@resolve_caller
@require_permission("orders.update")
def update_status_route(order_id: int):
    """
    Move an order through the status machine.

    Requires: orders.update permission
    Body: status, tracking_number?, notes?, override?
    """
    try:
        data = request.get_json(silent=True) or {}
        status = clean_str(data.get("status"), "status")
        if status is None:
            raise ValidationError("status", "is required")

        order = order_service.update_status(
            order_id,
            status,
            tracking_number=clean_str(data.get("tracking_number"), "tracking_number"),
            notes=clean_str(data.get("notes"), "notes"),
            actor=current_actor(),
            override=data.get("override") is True,
        )
        return jsonify({"order": order.to_dict()}), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment-status")
@resolve_caller
@require_permission("orders.update")
def update_payment_status_route(order_id: int):
    """
    Record a payment outcome (gateway webhook relay or operator).

    Requires: orders.update permission
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_status = clean_str(data.get("payment_status"), "payment_status")
        if payment_status is None:
            raise ValidationError("payment_status", "is required")

        order = order_service.update_payment_status(
            order_id,
            payment_status,
            reference=clean_str(data.get("reference"), "reference"),
            actor=current_actor(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@resolve_caller
@require_permission("orders.delete")
def delete_order_route(order_id: int):
    """
    Requires: orders.delete permission
    """
    try:
        order_service.delete_order(order_id)
        return jsonify({"deleted": True, "order_id": order_id}), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/admin/statistics")
@resolve_caller
@require_permission("analytics.view")
def order_statistics_route():
    """
    Requires: analytics.view permission
    Query: period (days, default 30)
    """
    try:
        period = parse_int(request.args.get("period", 30), "period", minimum=1)
        return jsonify({"statistics": order_service.order_statistics(period)}), 200

    except CheckoutError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to compute order statistics")
        return jsonify({"error": "Internal server error"}), 500
