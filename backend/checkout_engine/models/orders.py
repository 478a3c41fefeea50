from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

# Order lifecycle
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_REFUNDED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"

PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDED,
)

PAYMENT_METHODS = ("stripe", "paypal", "alipay")

ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "company",
    "address_line_1",
    "address_line_2",
    "city",
    "state",
    "postal_code",
    "country",
)


class Order(db.Model):
    """
    Committed order header.

    Created exactly once per successful checkout; afterwards only the status
    and payment fields move, through order_service. All amounts in cents.
    Invariant: total_cents == subtotal_cents + tax_cents + shipping_cents - discount_cents.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint(
            "status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded')",
            name="ck_orders_status",
        ),
        db.CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="ck_orders_payment_status",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "ORD-123456789")
    order_number = db.Column(db.String(50), nullable=False)

    # NULL customer_id means guest checkout
    customer_id = db.Column(db.Integer, nullable=True)
    session_id = db.Column(db.String(255), nullable=True, index=True)

    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=ORDER_STATUS_PENDING)
    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(50), nullable=False)
    payment_reference = db.Column(db.String(255), nullable=True)

    billing_first_name = db.Column(db.String(100), nullable=False)
    billing_last_name = db.Column(db.String(100), nullable=False)
    billing_company = db.Column(db.String(100), nullable=True)
    billing_address_line_1 = db.Column(db.String(255), nullable=False)
    billing_address_line_2 = db.Column(db.String(255), nullable=True)
    billing_city = db.Column(db.String(100), nullable=False)
    billing_state = db.Column(db.String(100), nullable=False)
    billing_postal_code = db.Column(db.String(20), nullable=False)
    billing_country = db.Column(db.String(50), nullable=False)

    shipping_first_name = db.Column(db.String(100), nullable=False)
    shipping_last_name = db.Column(db.String(100), nullable=False)
    shipping_company = db.Column(db.String(100), nullable=True)
    shipping_address_line_1 = db.Column(db.String(255), nullable=False)
    shipping_address_line_2 = db.Column(db.String(255), nullable=True)
    shipping_city = db.Column(db.String(100), nullable=False)
    shipping_state = db.Column(db.String(100), nullable=False)
    shipping_postal_code = db.Column(db.String(20), nullable=False)
    shipping_country = db.Column(db.String(50), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    tracking_number = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def address(self, prefix: str) -> dict:
        return {field: getattr(self, f"{prefix}_{field}") for field in ADDRESS_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "billing_address": self.address("billing"),
            "shipping_address": self.address("shipping"),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Order line snapshot. Immutable once written.

    Name and price are copied from the product at checkout so later catalog
    edits never change historical orders. product_id is a lookup-only link.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(100), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderEvent(db.Model):
    """
    Append-only audit trail of order creation and status/payment transitions.

    IMMUTABLE: rows are written in the same transaction as the change they
    record and are never updated.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    # order.created, order.status_changed, order.payment_status_changed, order.restocked
    event_type = db.Column(db.String(64), nullable=False, index=True)
    from_value = db.Column(db.String(20), nullable=True)
    to_value = db.Column(db.String(20), nullable=True)
    actor = db.Column(db.String(64), nullable=True)
    note = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_value": self.from_value,
            "to_value": self.to_value,
            "actor": self.actor,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class IdempotencyKey(db.Model):
    """Short-lived mapping from a client checkout key to the order it created."""
    __tablename__ = "checkout_idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("owner", "key", name="uq_checkout_idempotency_keys_owner_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    # customer:<id>, session:<id> or guest; keys never collide across callers
    owner = db.Column(db.String(300), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    # sha256 of the normalized request; a reused key must describe the same checkout
    request_fingerprint = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
