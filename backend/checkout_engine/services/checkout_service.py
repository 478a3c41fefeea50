# Overview: Checkout transaction engine; turns a cart or explicit lines into a committed order.

"""
Checkout Service

WHY: The only place where money totals, stock counts and order creation
must agree. Everything between reading stock and clearing the cart runs as
one database transaction: it either commits completely or leaves no trace.

ALGORITHM (place_order):
1. Validate the request (no storage access).
2. Begin the write transaction (BEGIN IMMEDIATE / lock_timeout).
3. Replay an earlier order if the idempotency key is already mapped.
4. Resolve lines: explicit lines, or the customer's / guest session's cart.
5. Re-read every product FOR UPDATE; reject inactive/missing products and
   insufficient stock.
6. Price with current product prices (client prices are never used).
7. Insert the order header, regenerating the order number on collision.
8. Insert line snapshots, decrement stock, bump sales counters.
9. Delete the consumed cart entries, record the idempotency key and the
   order.created event.
10. Commit. Any failure rolls everything back.

Payment initiation happens after commit (payment_service), never inside
the transaction.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    CheckoutError,
    EmptyCartError,
    InsufficientStockError,
    OrderNumberCollisionError,
    ProductUnavailableError,
    TransientError,
    ValidationError,
)
from ..extensions import db
from ..models import CartItem, IdempotencyKey, Order, OrderItem, Product
from ..models.orders import ORDER_STATUS_PENDING, PAYMENT_METHODS, PAYMENT_STATUS_PENDING
from ..time_utils import utcnow
from ..validation import (
    MAX_LINE_QUANTITY,
    clean_str,
    normalize_phone,
    parse_int,
    require_length,
    validate_address_fields,
    validate_choice,
    validate_email,
)
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry, storage_errors_as_transient
from .ledger_service import append_order_event
from .order_numbers import OrderNumberGenerator, default_generator
from .order_service import OrderWithItems, get_order
from .pricing import PricedLine, PricingPolicy, price_lines


# =============================================================================
# REQUEST TYPES
# =============================================================================

@dataclass(frozen=True)
class Address:
    first_name: str
    last_name: str
    address_line_1: str
    city: str
    state: str
    postal_code: str
    country: str
    company: str | None = None
    address_line_2: str | None = None

    @classmethod
    def from_dict(cls, data, prefix: str) -> "Address":
        if not isinstance(data, dict):
            raise ValidationError(prefix, "is required")
        return cls(**validate_address_fields(data, prefix))

    def to_columns(self, prefix: str) -> dict:
        return {f"{prefix}_{name}": value for name, value in asdict(self).items()}


@dataclass(frozen=True)
class RequestedLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Everything checkout needs from the caller.

    items empty means "use the cart" of customer_id (signed in) or
    session_id (guest). Prices are never part of the request.
    """
    email: str
    payment_method: str
    billing_address: Address
    shipping_address: Address
    customer_id: int | None = None
    session_id: str | None = None
    phone: str | None = None
    items: tuple[RequestedLine, ...] = field(default_factory=tuple)
    idempotency_key: str | None = None
    notes: str | None = None

    @classmethod
    def from_payload(
        cls,
        data: dict,
        *,
        customer_id: int | None = None,
        session_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> "CheckoutRequest":
        """Parse a JSON checkout body. Field-level problems raise ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("body", "must be a JSON object")

        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("items", "must be a list")

        items = []
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{index}]", "must be an object")
            items.append(RequestedLine(
                product_id=parse_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1),
                quantity=parse_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1, maximum=MAX_LINE_QUANTITY),
            ))

        return cls(
            email=validate_email(data.get("email")),
            phone=normalize_phone(data.get("phone")),
            payment_method=validate_choice(data.get("payment_method"), "payment_method", PAYMENT_METHODS),
            billing_address=Address.from_dict(data.get("billing_address"), "billing_address"),
            shipping_address=Address.from_dict(data.get("shipping_address"), "shipping_address"),
            customer_id=customer_id,
            session_id=session_id or clean_str(data.get("session_id"), "session_id"),
            items=tuple(items),
            idempotency_key=idempotency_key or clean_str(data.get("idempotency_key"), "idempotency_key"),
            notes=require_length(data.get("notes"), "notes", 0, 1000, required=False),
        )

    def fingerprint(self) -> str:
        """Stable hash of the request minus the idempotency key."""
        payload = asdict(self)
        payload.pop("idempotency_key")
        payload["items"] = sorted((line.product_id, line.quantity) for line in merge_lines(self.items))
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    @property
    def actor(self) -> str:
        if self.customer_id is not None:
            return f"customer:{self.customer_id}"
        return "guest"

    @property
    def key_owner(self) -> str:
        """Idempotency keys are scoped to the caller that sent them."""
        if self.customer_id is not None:
            return f"customer:{self.customer_id}"
        if self.session_id:
            return f"session:{self.session_id}"
        return "guest"


def validate_checkout_request(request: CheckoutRequest) -> None:
    """
    Fail-fast validation of an already-built request. Never touches storage.

    Re-checks what from_payload checks so requests built in code get the
    same guarantees as requests parsed from JSON.
    """
    validate_email(request.email)
    normalize_phone(request.phone)
    validate_choice(request.payment_method, "payment_method", PAYMENT_METHODS)

    for prefix in ("billing_address", "shipping_address"):
        address = getattr(request, prefix)
        if not isinstance(address, Address):
            raise ValidationError(prefix, "is required")
        validate_address_fields(asdict(address), prefix)

    if request.customer_id is not None:
        parse_int(request.customer_id, "customer_id", minimum=1)

    for index, line in enumerate(request.items):
        parse_int(line.product_id, f"items[{index}].product_id", minimum=1)
        parse_int(line.quantity, f"items[{index}].quantity", minimum=1, maximum=MAX_LINE_QUANTITY)

    if not request.items and request.customer_id is None and not request.session_id:
        raise ValidationError("session_id", "is required for guest checkout from a cart")

    if request.idempotency_key is not None:
        require_length(request.idempotency_key, "idempotency_key", 8, 128)


def merge_lines(lines) -> list[RequestedLine]:
    """Combine lines naming the same product, keeping first-seen order."""
    merged: dict[int, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [RequestedLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]


# =============================================================================
# TRANSACTION STEPS
# =============================================================================

def _replayed_order_id(request: CheckoutRequest, fingerprint: str) -> int | None:
    row = db.session.query(IdempotencyKey).filter_by(
        key=request.idempotency_key,
        owner=request.key_owner,
    ).first()
    if row is None:
        return None

    if row.expires_at <= utcnow():
        db.session.delete(row)
        db.session.flush()
        return None

    if row.request_fingerprint != fingerprint:
        raise ValidationError("idempotency_key", "was already used for a different checkout request")
    return row.order_id


def _cart_query(request: CheckoutRequest):
    query = db.session.query(CartItem)
    if request.customer_id is not None:
        return query.filter(CartItem.user_id == request.customer_id)
    return query.filter(CartItem.session_id == request.session_id)


def _resolve_lines(request: CheckoutRequest) -> list[RequestedLine]:
    if request.items:
        return merge_lines(request.items)

    if request.customer_id is None and not request.session_id:
        raise EmptyCartError()

    cart = _cart_query(request).order_by(CartItem.id).all()
    lines = merge_lines(RequestedLine(product_id=c.product_id, quantity=c.quantity) for c in cart)
    if not lines:
        raise EmptyCartError()
    return lines


def _lock_and_check_stock(lines: list[RequestedLine]) -> list[tuple[Product, int]]:
    """
    Re-read every product under lock and verify it can be sold.

    Rows are locked in product id order so concurrent checkouts over
    overlapping products always queue in the same order.
    """
    products: dict[int, Product] = {}
    for product_id in sorted(line.product_id for line in lines):
        products[product_id] = lock_for_update(
            db.session.query(Product).filter_by(id=product_id)
        ).first()

    checked = []
    for line in lines:
        product = products[line.product_id]
        if product is None:
            raise ProductUnavailableError(f"#{line.product_id}", product_id=line.product_id)
        if not product.is_purchasable:
            raise ProductUnavailableError(product.name, product_id=product.id)
        if product.stock < line.quantity:
            raise InsufficientStockError(product.name, product.stock, product_id=product.id)
        checked.append((product, line.quantity))
    return checked


def _try_insert_header(order_number: str, columns: dict) -> Order:
    savepoint = db.session.begin_nested()
    order = Order(order_number=order_number, **columns)
    db.session.add(order)
    try:
        db.session.flush()
    except IntegrityError as exc:
        savepoint.rollback()
        taken = db.session.query(Order.id).filter_by(order_number=order_number).first()
        if taken is None:
            raise
        raise OrderNumberCollisionError(order_number) from exc
    savepoint.commit()
    return order


def _insert_header(columns: dict, generator: OrderNumberGenerator, max_attempts: int) -> Order:
    for attempt in range(1, max_attempts + 1):
        order_number = generator.next()
        try:
            return _try_insert_header(order_number, columns)
        except OrderNumberCollisionError:
            current_app.logger.warning(
                "Order number %s collided (attempt %s/%s)", order_number, attempt, max_attempts
            )
    raise TransientError("Could not allocate a unique order number, please try again")


# =============================================================================
# ENTRY POINT
# =============================================================================

def place_order(
    request: CheckoutRequest,
    *,
    number_generator: OrderNumberGenerator | None = None,
    policy: PricingPolicy | None = None,
) -> OrderWithItems:
    """
    Convert the request into a committed order.

    Raises ValidationError, EmptyCartError, ProductUnavailableError,
    InsufficientStockError or TransientError; in every error case nothing
    was written.
    """
    validate_checkout_request(request)

    config = current_app.config
    generator = number_generator or default_generator
    policy = policy or PricingPolicy.from_config(config)
    max_number_attempts = int(config.get("ORDER_NUMBER_MAX_ATTEMPTS", 3))
    key_ttl = timedelta(hours=int(config.get("IDEMPOTENCY_KEY_TTL_HOURS", 24)))
    fingerprint = request.fingerprint() if request.idempotency_key else None

    def _op():
        try:
            begin_write_transaction()

            if request.idempotency_key:
                replayed_id = _replayed_order_id(request, fingerprint)
                if replayed_id is not None:
                    db.session.commit()
                    return replayed_id, True

            lines = _resolve_lines(request)
            checked = _lock_and_check_stock(lines)

            breakdown = price_lines(
                (
                    PricedLine(quantity=qty, unit_price_cents=product.price_cents)
                    for product, qty in checked
                ),
                policy,
            )

            columns = {
                "customer_id": request.customer_id,
                "session_id": request.session_id,
                "email": request.email,
                "phone": request.phone,
                "status": ORDER_STATUS_PENDING,
                "payment_status": PAYMENT_STATUS_PENDING,
                "payment_method": request.payment_method,
                "subtotal_cents": breakdown.subtotal_cents,
                "tax_cents": breakdown.tax_cents,
                "shipping_cents": breakdown.shipping_cents,
                "discount_cents": 0,
                "total_cents": breakdown.total_cents,
                "notes": request.notes,
                **request.billing_address.to_columns("billing"),
                **request.shipping_address.to_columns("shipping"),
            }
            order = _insert_header(columns, generator, max_number_attempts)

            for product, qty in checked:
                db.session.add(OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    product_name=product.name,
                    product_sku=product.sku,
                    quantity=qty,
                    unit_price_cents=product.price_cents,
                    line_total_cents=product.price_cents * qty,
                ))
                product.stock -= qty
                product.sales_count += qty

            if request.customer_id is not None or request.session_id:
                _cart_query(request).delete(synchronize_session=False)

            if request.idempotency_key:
                now = utcnow()
                db.session.add(IdempotencyKey(
                    key=request.idempotency_key,
                    owner=request.key_owner,
                    order_id=order.id,
                    request_fingerprint=fingerprint,
                    created_at=now,
                    expires_at=now + key_ttl,
                ))

            append_order_event(
                order_id=order.id,
                event_type="order.created",
                to_value=ORDER_STATUS_PENDING,
                actor=request.actor,
            )

            db.session.commit()
            return order.id, False
        except CheckoutError:
            db.session.rollback()
            raise

    with storage_errors_as_transient("checkout"):
        # IntegrityError here is a concurrent request that claimed the same
        # idempotency key first; the retry finds its mapping and replays it.
        order_id, replayed = run_with_retry(
            _op,
            attempts=int(config.get("CHECKOUT_RETRY_ATTEMPTS", 3)),
            retry_on=(IntegrityError,),
        )

    if replayed:
        current_app.logger.info("Checkout replayed order %s for idempotency key", order_id)
    else:
        current_app.logger.info("Checkout committed order %s (%s)", order_id, request.actor)

    return get_order(order_id, replayed=replayed)
