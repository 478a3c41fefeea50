# Overview: Order read side and status state machine.

"""
Order Query / Status Service

Read operations (get, list, statistics) never lock and never write.
Status and payment transitions are the only mutations of a committed order;
each runs in its own short transaction with the order row locked.

STATUS MACHINE:
    pending -> processing -> shipped -> delivered
    pending -> shipped
    pending | processing -> cancelled
    any -> refunded, once the payment is paid (or already refunded)

Re-entering the current status is allowed (attach tracking number / notes)
and never moves shipped_at or delivered_at. Anything else requires the
administrative override.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy import case, func, or_

from ..errors import CheckoutError, InvalidStatusTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, OrderEvent, Product, IdempotencyKey
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
    PAYMENT_STATUSES,
)
from ..time_utils import utcnow
from ..validation import parse_int, clean_str
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry, storage_errors_as_transient
from .ledger_service import append_order_event


ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_PROCESSING, ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PROCESSING: {ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED},
    ORDER_STATUS_DELIVERED: set(),
    ORDER_STATUS_CANCELLED: set(),
    ORDER_STATUS_REFUNDED: set(),
}

RESTOCKABLE_STATUSES = {ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING}

PAYMENT_TRANSITIONS = {
    PAYMENT_STATUS_PENDING: {PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED},
    PAYMENT_STATUS_FAILED: {PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID},
    PAYMENT_STATUS_PAID: {PAYMENT_STATUS_REFUNDED},
    PAYMENT_STATUS_REFUNDED: set(),
}

SORT_COLUMNS = {
    "created_at": Order.created_at,
    "total": Order.total_cents,
    "status": Order.status,
    "order_number": Order.order_number,
}

MAX_PAGE_LIMIT = 100


# =============================================================================
# READ MODEL
# =============================================================================

@dataclass(frozen=True)
class OrderLineView:
    id: int
    product_id: int
    product_name: str
    product_sku: str | None
    quantity: int
    unit_price_cents: int
    line_total_cents: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


@dataclass(frozen=True)
class OrderWithItems:
    """
    Order header plus its line snapshots, built by the query layer.

    Immutable: callers never attach fields to it. replayed is True when the
    order came back from an idempotency key instead of a new commit.
    """
    header: dict
    items: tuple[OrderLineView, ...]
    replayed: bool = False

    @property
    def id(self) -> int:
        return self.header["id"]

    @property
    def order_number(self) -> str:
        return self.header["order_number"]

    @property
    def customer_id(self) -> int | None:
        return self.header["customer_id"]

    @property
    def status(self) -> str:
        return self.header["status"]

    @property
    def payment_status(self) -> str:
        return self.header["payment_status"]

    @property
    def payment_method(self) -> str:
        return self.header["payment_method"]

    @property
    def total_cents(self) -> int:
        return self.header["total_cents"]

    def to_dict(self) -> dict:
        return {**self.header, "items": [item.to_dict() for item in self.items]}


@dataclass(frozen=True)
class OrderQuery:
    status: str | None = None
    payment_status: str | None = None
    search: str | None = None
    customer_id: int | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20

    @classmethod
    def from_args(cls, args, *, customer_id: int | None = None, default_limit: int = 20) -> "OrderQuery":
        """Build a query from request args; unknown sort keys fall back to created_at desc."""
        status = clean_str(args.get("status"), "status")
        if status == "all":
            status = None
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(ORDER_STATUSES)}")

        payment_status = clean_str(args.get("payment_status"), "payment_status")
        if payment_status == "all":
            payment_status = None
        if payment_status is not None and payment_status not in PAYMENT_STATUSES:
            raise ValidationError("payment_status", f"must be one of {', '.join(PAYMENT_STATUSES)}")

        sort_by = args.get("sort_by") or "created_at"
        if sort_by not in SORT_COLUMNS:
            sort_by = "created_at"
        sort_order = (args.get("sort_order") or "desc").lower()
        if sort_order not in ("asc", "desc"):
            sort_order = "desc"

        page = parse_int(args.get("page", 1), "page", minimum=1)
        limit = parse_int(args.get("limit", default_limit), "limit", minimum=1, maximum=MAX_PAGE_LIMIT)

        return cls(
            status=status,
            payment_status=payment_status,
            search=clean_str(args.get("search"), "search"),
            customer_id=customer_id,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )


@dataclass(frozen=True)
class OrderPage:
    orders: list[OrderWithItems] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }


def _line_view(item: OrderItem) -> OrderLineView:
    return OrderLineView(
        id=item.id,
        product_id=item.product_id,
        product_name=item.product_name,
        product_sku=item.product_sku,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        line_total_cents=item.line_total_cents,
    )


def build_order_view(order: Order, items: list[OrderItem], *, replayed: bool = False) -> OrderWithItems:
    return OrderWithItems(
        header=order.to_dict(),
        items=tuple(_line_view(item) for item in items),
        replayed=replayed,
    )


def _items_for(order_ids: list[int]) -> dict[int, list[OrderItem]]:
    grouped: dict[int, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    rows = (
        db.session.query(OrderItem)
        .filter(OrderItem.order_id.in_(order_ids))
        .order_by(OrderItem.order_id, OrderItem.id)
        .all()
    )
    for row in rows:
        grouped[row.order_id].append(row)
    return grouped


# =============================================================================
# READ OPERATIONS
# =============================================================================

def get_order(order_id: int, customer_id: int | None = None, *, replayed: bool = False) -> OrderWithItems:
    """
    Load one order with its items.

    When customer_id is given the order must belong to that customer;
    someone else's order is reported as not found.
    """
    with storage_errors_as_transient("order lookup"):
        query = db.session.query(Order).filter_by(id=order_id)
        if customer_id is not None:
            query = query.filter_by(customer_id=customer_id)
        order = query.first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return build_order_view(order, _items_for([order.id])[order.id], replayed=replayed)


def get_order_by_number(order_number: str) -> OrderWithItems:
    with storage_errors_as_transient("order lookup"):
        order = db.session.query(Order).filter_by(order_number=order_number).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_number": order_number})
        return build_order_view(order, _items_for([order.id])[order.id])


def list_orders(query: OrderQuery) -> OrderPage:
    """Filtered, sorted, paginated order listing. Items are fetched in one query per page."""
    with storage_errors_as_transient("order listing"):
        base = db.session.query(Order)

        if query.status:
            base = base.filter(Order.status == query.status)
        if query.payment_status:
            base = base.filter(Order.payment_status == query.payment_status)
        if query.customer_id is not None:
            base = base.filter(Order.customer_id == query.customer_id)
        if query.search:
            term = f"%{query.search}%"
            base = base.filter(or_(
                Order.order_number.ilike(term),
                Order.email.ilike(term),
                Order.billing_first_name.ilike(term),
                Order.billing_last_name.ilike(term),
            ))

        total = base.order_by(None).count()

        column = SORT_COLUMNS.get(query.sort_by, Order.created_at)
        direction = column.asc() if query.sort_order == "asc" else column.desc()
        tiebreak = Order.id.asc() if query.sort_order == "asc" else Order.id.desc()

        orders = (
            base.order_by(direction, tiebreak)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
            .all()
        )
        items = _items_for([order.id for order in orders])

        return OrderPage(
            orders=[build_order_view(order, items[order.id]) for order in orders],
            page=query.page,
            limit=query.limit,
            total=total,
        )


def list_customer_orders(customer_id: int, *, page: int = 1, limit: int = 10) -> OrderPage:
    return list_orders(OrderQuery(customer_id=customer_id, page=page, limit=limit))


def order_statistics(period_days: int = 30) -> dict:
    """Counts per status, revenue and average order value over the last period_days."""
    if period_days < 1:
        raise ValidationError("period", "must be >= 1")

    since = utcnow() - timedelta(days=period_days)

    with storage_errors_as_transient("order statistics"):
        status_counts = [
            func.count(case((Order.status == status, 1))).label(f"{status}_orders")
            for status in ORDER_STATUSES
        ]
        summary = (
            db.session.query(
                func.count(Order.id).label("total_orders"),
                *status_counts,
                func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
                func.coalesce(func.avg(Order.total_cents), 0).label("average_order_cents"),
            )
            .filter(Order.created_at >= since)
            .one()
        )

        day = func.date(Order.created_at)
        daily_rows = (
            db.session.query(
                day.label("date"),
                func.count(Order.id).label("orders_count"),
                func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
            )
            .filter(Order.created_at >= since)
            .group_by(day)
            .order_by(day.desc())
            .all()
        )

    result = {"period_days": period_days}
    result.update({key: int(value) for key, value in summary._mapping.items() if key != "average_order_cents"})
    result["average_order_cents"] = int(round(float(summary.average_order_cents or 0)))
    result["daily"] = [
        {
            "date": str(row.date),
            "orders_count": int(row.orders_count),
            "revenue_cents": int(row.revenue_cents),
        }
        for row in daily_rows
    ]
    return result


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _transition_allowed(order: Order, new_status: str) -> bool:
    if new_status == ORDER_STATUS_REFUNDED:
        return order.payment_status in (PAYMENT_STATUS_PAID, PAYMENT_STATUS_REFUNDED)
    return new_status in ALLOWED_TRANSITIONS.get(order.status, set())


def _restock(order: Order, actor: str | None) -> None:
    """Return every line's quantity to product stock. Caller holds the order lock."""
    items = sorted(order.items, key=lambda item: item.product_id)
    for item in items:
        product = lock_for_update(db.session.query(Product).filter_by(id=item.product_id)).first()
        if product is None:
            continue
        product.stock += item.quantity
        product.sales_count = max(0, product.sales_count - item.quantity)

    append_order_event(
        order_id=order.id,
        event_type="order.restocked",
        actor=actor,
        note=", ".join(f"{item.product_id}x{item.quantity}" for item in items),
    )


def _load_locked_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def update_status(
    order_id: int,
    new_status: str,
    *,
    tracking_number: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
    override: bool = False,
) -> OrderWithItems:
    """
    Move an order through the status machine.

    First entry into shipped/delivered stamps shipped_at/delivered_at; later
    entries leave the stamp alone. Cancelling a pending or processing order
    restocks its lines when RESTOCK_ON_CANCEL is set.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError("status", f"must be one of {', '.join(ORDER_STATUSES)}")

    restock_on_cancel = bool(current_app.config.get("RESTOCK_ON_CANCEL", True))

    def _op():
        try:
            begin_write_transaction()
            order = _load_locked_order(order_id)
            current = order.status

            forced = new_status != current and not _transition_allowed(order, new_status)
            if forced and not override:
                raise InvalidStatusTransitionError(current, new_status)

            now = utcnow()
            if new_status == ORDER_STATUS_SHIPPED and order.shipped_at is None:
                order.shipped_at = now
            if new_status == ORDER_STATUS_DELIVERED and order.delivered_at is None:
                order.delivered_at = now

            if new_status == ORDER_STATUS_CANCELLED and current != ORDER_STATUS_CANCELLED:
                order.cancelled_at = now
                if restock_on_cancel and current in RESTOCKABLE_STATUSES:
                    _restock(order, actor)

            if tracking_number:
                order.tracking_number = tracking_number
            if notes:
                order.notes = notes

            if new_status != current:
                order.status = new_status
                append_order_event(
                    order_id=order.id,
                    event_type="order.status_changed",
                    from_value=current,
                    to_value=new_status,
                    actor=actor,
                    note="administrative override" if forced else notes,
                )

            order.updated_at = now
            db.session.commit()
            return order.id, current
        except CheckoutError:
            db.session.rollback()
            raise

    with storage_errors_as_transient("order status update"):
        updated_id, previous = run_with_retry(_op)

    current_app.logger.info("Order %s status %s -> %s", updated_id, previous, new_status)
    return get_order(updated_id)


def update_payment_status(
    order_id: int,
    payment_status: str,
    *,
    reference: str | None = None,
    actor: str | None = None,
) -> OrderWithItems:
    """
    Record a payment outcome (gateway webhook or operator).

    Repeating the current payment status is a no-op so webhook redelivery is
    harmless. A refund also moves the order to refunded.
    """
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError("payment_status", f"must be one of {', '.join(PAYMENT_STATUSES)}")

    def _op():
        try:
            begin_write_transaction()
            order = _load_locked_order(order_id)
            current = order.payment_status

            if payment_status != current:
                if payment_status not in PAYMENT_TRANSITIONS.get(current, set()):
                    raise InvalidStatusTransitionError(current, payment_status)
                order.payment_status = payment_status
                append_order_event(
                    order_id=order.id,
                    event_type="order.payment_status_changed",
                    from_value=current,
                    to_value=payment_status,
                    actor=actor,
                )

            if reference:
                order.payment_reference = reference

            if payment_status == PAYMENT_STATUS_REFUNDED and order.status != ORDER_STATUS_REFUNDED:
                append_order_event(
                    order_id=order.id,
                    event_type="order.status_changed",
                    from_value=order.status,
                    to_value=ORDER_STATUS_REFUNDED,
                    actor=actor,
                )
                order.status = ORDER_STATUS_REFUNDED

            order.updated_at = utcnow()
            db.session.commit()
            return order.id
        except CheckoutError:
            db.session.rollback()
            raise

    with storage_errors_as_transient("payment status update"):
        updated_id = run_with_retry(_op)

    current_app.logger.info("Order %s payment status -> %s", updated_id, payment_status)
    return get_order(updated_id)


def delete_order(order_id: int) -> None:
    """Administrative delete: order, items, events and idempotency mappings go together."""

    def _op():
        begin_write_transaction()
        order = _load_locked_order(order_id)
        db.session.query(IdempotencyKey).filter_by(order_id=order.id).delete(synchronize_session=False)
        db.session.query(OrderEvent).filter_by(order_id=order.id).delete(synchronize_session=False)
        db.session.delete(order)
        db.session.commit()

    with storage_errors_as_transient("order delete"):
        try:
            run_with_retry(_op)
        except NotFoundError:
            db.session.rollback()
            raise

    current_app.logger.info("Order %s deleted", order_id)
