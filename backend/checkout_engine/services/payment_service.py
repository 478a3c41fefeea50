# Overview: Post-commit payment initiation against a configured gateway.

"""
Payment Initiation Service

WHY: Once an order is committed the customer still has to be sent to the
payment provider. That step talks to the outside world, so it never runs
inside the checkout transaction and it can never undo a committed order.

DESIGN PRINCIPLES:
- Gateway chosen from configuration and held on the app (app.extensions)
- Failure is logged and reported as "pending"; the order stays as committed
- Settlement (capture, refunds at the provider) is out of scope; outcomes
  arrive through order_service.update_payment_status
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order
from .order_service import OrderWithItems


EXTENSION_KEY = "payment_gateway"

GATEWAY_MANUAL = "manual"
GATEWAY_HOSTED = "hosted"


class PaymentGatewayError(Exception):
    """Raised by a gateway that could not start a payment."""
    pass


@dataclass(frozen=True)
class PaymentInitiation:
    redirect_url: str | None
    reference: str | None = None


# =============================================================================
# GATEWAYS
# =============================================================================

class PaymentGateway:
    name = "base"

    def initiate(self, order: OrderWithItems) -> PaymentInitiation:
        raise NotImplementedError


class ManualPaymentGateway(PaymentGateway):
    """Payment is settled out-of-band (invoice, bank transfer); nothing to redirect to."""
    name = GATEWAY_MANUAL

    def initiate(self, order: OrderWithItems) -> PaymentInitiation:
        return PaymentInitiation(redirect_url=None)


class HostedPaymentGateway(PaymentGateway):
    """Sends the customer to a provider-hosted page per payment method."""
    name = GATEWAY_HOSTED

    def __init__(self, base_url: str):
        if not base_url:
            raise ValueError("HostedPaymentGateway requires a base_url")
        self.base_url = base_url.rstrip("/")

    def initiate(self, order: OrderWithItems) -> PaymentInitiation:
        reference = f"PAY-{secrets.token_hex(8).upper()}"
        return PaymentInitiation(
            redirect_url=f"{self.base_url}/{order.payment_method}/{order.order_number}",
            reference=reference,
        )


def build_gateway(config) -> PaymentGateway:
    kind = (config.get("PAYMENT_GATEWAY") or GATEWAY_MANUAL).lower()
    if kind == GATEWAY_MANUAL:
        return ManualPaymentGateway()
    if kind == GATEWAY_HOSTED:
        return HostedPaymentGateway(config.get("PAYMENT_REDIRECT_BASE_URL"))
    raise ValueError(f"Unknown PAYMENT_GATEWAY: {kind}")


def init_payment_gateway(app, gateway: PaymentGateway | None = None) -> PaymentGateway:
    gateway = gateway or build_gateway(app.config)
    app.extensions[EXTENSION_KEY] = gateway
    return gateway


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions[EXTENSION_KEY]


# =============================================================================
# INITIATION
# =============================================================================

def _record_reference(order_id: int, reference: str) -> None:
    order = db.session.get(Order, order_id)
    if order is None:
        return
    order.payment_reference = reference
    db.session.commit()


def initiate_payment(order: OrderWithItems) -> dict:
    """
    Ask the gateway to start payment for a committed order.

    Returns {"status": "initiated" | "pending", "redirect_url": ...}.
    Never raises for gateway or bookkeeping failures.
    """
    gateway = get_payment_gateway()
    try:
        initiation = gateway.initiate(order)
    except PaymentGatewayError as exc:
        current_app.logger.warning(
            "Payment initiation failed for order %s via %s: %s",
            order.order_number, gateway.name, exc,
        )
        return {"status": "pending", "redirect_url": None}
    except Exception:
        # Provider SDKs raise their own transport errors; the order is already committed
        current_app.logger.exception(
            "Payment gateway %s raised for order %s", gateway.name, order.order_number
        )
        return {"status": "pending", "redirect_url": None}

    if initiation.reference:
        try:
            _record_reference(order.id, initiation.reference)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "Could not record payment reference for order %s", order.order_number
            )

    if initiation.redirect_url is None:
        return {"status": "pending", "redirect_url": None}
    return {"status": "initiated", "redirect_url": initiation.redirect_url}
