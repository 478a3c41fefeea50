"""
Order query and status service tests.

Verifies:
- Status machine transitions, stamps and administrative override
- Cancellation restock policy (both settings)
- Payment status transitions and refunds
- Listing filters, search, sorting, pagination and statistics
- Administrative delete
"""

import pytest

from checkout_engine.errors import InvalidStatusTransitionError, NotFoundError, ValidationError
from checkout_engine.models import IdempotencyKey, Order, OrderEvent, OrderItem, Product
from checkout_engine.services.checkout_service import Address, place_order
from checkout_engine.services.order_service import (
    OrderQuery,
    delete_order,
    get_order,
    get_order_by_number,
    list_customer_orders,
    list_orders,
    order_statistics,
    update_payment_status,
    update_status,
)

from conftest import ADDRESS, make_request


@pytest.fixture
def order(db_session, tee):
    return place_order(make_request([(tee.id, 3)]))


def _events(session, order_id, event_type=None):
    query = session.query(OrderEvent).filter_by(order_id=order_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(OrderEvent.id).all()


# =============================================================================
# READS
# =============================================================================


class TestGetOrder:

    def test_owner_can_read(self, order):
        assert get_order(order.id, customer_id=7).id == order.id

    def test_other_customer_gets_not_found(self, order):
        with pytest.raises(NotFoundError):
            get_order(order.id, customer_id=8)

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            get_order(123456)

    def test_by_number(self, order):
        assert get_order_by_number(order.order_number).id == order.id

    def test_to_dict_shape(self, order):
        payload = get_order(order.id).to_dict()
        assert payload["order_number"] == order.order_number
        assert payload["billing_address"]["city"] == ADDRESS["city"]
        assert payload["items"][0]["quantity"] == 3
        assert payload["created_at"].endswith("Z")


# =============================================================================
# STATUS MACHINE
# =============================================================================


class TestStatusTransitions:

    @pytest.mark.parametrize("path", [
        ["processing", "shipped", "delivered"],
        ["shipped", "delivered"],
        ["processing", "cancelled"],
        ["cancelled"],
    ])
    def test_allowed_paths(self, order, path):
        for status in path:
            result = update_status(order.id, status, actor="admin:1")
        assert result.status == path[-1]

    @pytest.mark.parametrize("path,target", [
        ([], "delivered"),
        (["shipped"], "cancelled"),
        (["shipped", "delivered"], "processing"),
        (["cancelled"], "pending"),
        ([], "refunded"),
    ])
    def test_refused_transitions(self, db_session, order, path, target):
        for status in path:
            update_status(order.id, status)

        with pytest.raises(InvalidStatusTransitionError):
            update_status(order.id, target)

        assert db_session.get(Order, order.id).status == (path[-1] if path else "pending")

    def test_unknown_status(self, order):
        with pytest.raises(ValidationError):
            update_status(order.id, "lost")

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            update_status(424242, "processing")

    def test_shipped_at_set_once(self, db_session, order):
        shipped = update_status(order.id, "shipped", tracking_number="1Z999")
        stamp = shipped.header["shipped_at"]
        assert stamp is not None

        again = update_status(order.id, "shipped", tracking_number="1Z000")

        assert again.header["shipped_at"] == stamp
        assert again.header["tracking_number"] == "1Z000"
        assert db_session.get(Order, order.id).shipped_at is not None
        assert len(_events(db_session, order.id, "order.status_changed")) == 1

    def test_delivered_stamp(self, order):
        update_status(order.id, "shipped")
        delivered = update_status(order.id, "delivered")
        assert delivered.header["delivered_at"] is not None

    def test_override_allows_any_move_and_is_audited(self, db_session, order):
        result = update_status(order.id, "delivered", override=True, actor="super_admin:1")

        assert result.status == "delivered"
        event = _events(db_session, order.id, "order.status_changed")[-1]
        assert (event.from_value, event.to_value, event.actor) == ("pending", "delivered", "super_admin:1")
        assert event.note == "administrative override"

    def test_refund_requires_paid(self, order):
        update_payment_status(order.id, "paid")
        result = update_status(order.id, "refunded")
        assert result.status == "refunded"

    def test_status_change_writes_event(self, db_session, order):
        update_status(order.id, "processing", actor="admin:3", notes="picked")

        event = _events(db_session, order.id, "order.status_changed")[0]
        assert (event.from_value, event.to_value, event.actor, event.note) == (
            "pending", "processing", "admin:3", "picked",
        )


# =============================================================================
# CANCELLATION RESTOCK POLICY
# =============================================================================


class TestCancelRestock:

    def test_cancel_restocks_by_default(self, db_session, tee, order):
        assert db_session.get(Product, tee.id).stock == 7

        result = update_status(order.id, "cancelled")

        product = db_session.get(Product, tee.id)
        assert result.header["cancelled_at"] is not None
        assert product.stock == 10
        assert product.sales_count == 0
        assert len(_events(db_session, order.id, "order.restocked")) == 1

    def test_cancel_from_processing_restocks(self, db_session, tee, order):
        update_status(order.id, "processing")
        update_status(order.id, "cancelled")
        assert db_session.get(Product, tee.id).stock == 10

    def test_cancel_twice_restocks_once(self, db_session, tee, order):
        update_status(order.id, "cancelled")
        update_status(order.id, "cancelled")
        assert db_session.get(Product, tee.id).stock == 10

    def test_restock_disabled_leaves_stock(self, app, db_session, tee, order, monkeypatch):
        monkeypatch.setitem(app.config, "RESTOCK_ON_CANCEL", False)

        update_status(order.id, "cancelled")

        product = db_session.get(Product, tee.id)
        assert product.stock == 7
        assert product.sales_count == 3
        assert _events(db_session, order.id, "order.restocked") == []

    def test_forced_cancel_after_shipping_does_not_restock(self, db_session, tee, order):
        update_status(order.id, "shipped")
        update_status(order.id, "cancelled", override=True)
        assert db_session.get(Product, tee.id).stock == 7


# =============================================================================
# PAYMENT STATUS
# =============================================================================


class TestPaymentStatus:

    def test_paid_with_reference(self, db_session, order):
        result = update_payment_status(order.id, "paid", reference="pi_123", actor="gateway")

        assert result.payment_status == "paid"
        assert result.header["payment_reference"] == "pi_123"
        event = _events(db_session, order.id, "order.payment_status_changed")[0]
        assert (event.from_value, event.to_value) == ("pending", "paid")

    def test_repeat_is_noop(self, db_session, order):
        update_payment_status(order.id, "paid")
        update_payment_status(order.id, "paid")
        assert len(_events(db_session, order.id, "order.payment_status_changed")) == 1

    def test_failed_can_retry(self, order):
        update_payment_status(order.id, "failed")
        assert update_payment_status(order.id, "paid").payment_status == "paid"

    def test_refund_moves_order_to_refunded(self, order):
        update_payment_status(order.id, "paid")
        result = update_payment_status(order.id, "refunded")
        assert result.payment_status == "refunded"
        assert result.status == "refunded"

    def test_pending_cannot_be_refunded(self, order):
        with pytest.raises(InvalidStatusTransitionError):
            update_payment_status(order.id, "refunded")

    def test_unknown_payment_status(self, order):
        with pytest.raises(ValidationError):
            update_payment_status(order.id, "settled")


# =============================================================================
# LISTING / STATISTICS
# =============================================================================


@pytest.fixture
def three_orders(db_session, tee, mug):
    first = place_order(make_request([(tee.id, 1)], customer_id=1, email="first@example.com"))
    second = place_order(make_request(
        [(mug.id, 2)],
        customer_id=2,
        email="second@example.com",
        billing_address=Address(**dict(ADDRESS, first_name="Grace", last_name="Hopper")),
    ))
    third = place_order(make_request([(tee.id, 5)], customer_id=1, email="third@example.com"))
    update_status(second.id, "processing")
    return first, second, third


class TestListOrders:

    def test_default_newest_first(self, three_orders):
        page = list_orders(OrderQuery())
        assert [o.id for o in page.orders] == [o.id for o in reversed(three_orders)]
        assert page.total == 3
        assert page.pages == 1

    def test_items_are_included(self, three_orders):
        page = list_orders(OrderQuery())
        assert all(len(o.items) == 1 for o in page.orders)

    def test_status_filter(self, three_orders):
        page = list_orders(OrderQuery(status="processing"))
        assert [o.id for o in page.orders] == [three_orders[1].id]

    def test_payment_status_filter(self, three_orders):
        update_payment_status(three_orders[0].id, "paid")
        page = list_orders(OrderQuery(payment_status="paid"))
        assert [o.id for o in page.orders] == [three_orders[0].id]

    def test_search_is_case_insensitive(self, three_orders):
        assert [o.id for o in list_orders(OrderQuery(search="HOPPER")).orders] == [three_orders[1].id]
        assert [o.id for o in list_orders(OrderQuery(search="third@")).orders] == [three_orders[2].id]
        number = three_orders[0].order_number
        assert [o.id for o in list_orders(OrderQuery(search=number)).orders] == [three_orders[0].id]

    def test_sort_by_total_ascending(self, three_orders):
        page = list_orders(OrderQuery(sort_by="total", sort_order="asc"))
        totals = [o.total_cents for o in page.orders]
        assert totals == sorted(totals)

    def test_pagination(self, three_orders):
        page = list_orders(OrderQuery(limit=2, page=2))
        assert len(page.orders) == 1
        assert page.to_dict()["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    def test_customer_orders(self, three_orders):
        page = list_customer_orders(1)
        assert {o.id for o in page.orders} == {three_orders[0].id, three_orders[2].id}


class TestOrderQueryFromArgs:

    def test_all_means_no_filter(self):
        query = OrderQuery.from_args({"status": "all", "payment_status": "all"})
        assert query.status is None
        assert query.payment_status is None

    def test_unknown_sort_falls_back(self):
        query = OrderQuery.from_args({"sort_by": "email", "sort_order": "sideways"})
        assert (query.sort_by, query.sort_order) == ("created_at", "desc")

    def test_limit_bounds(self):
        with pytest.raises(ValidationError):
            OrderQuery.from_args({"limit": "101"})
        with pytest.raises(ValidationError):
            OrderQuery.from_args({"page": "0"})

    def test_bad_status(self):
        with pytest.raises(ValidationError):
            OrderQuery.from_args({"status": "lost"})


class TestStatistics:

    def test_counts_and_revenue(self, three_orders):
        stats = order_statistics()

        totals = [o.total_cents for o in three_orders]
        assert stats["total_orders"] == 3
        assert stats["pending_orders"] == 2
        assert stats["processing_orders"] == 1
        assert stats["revenue_cents"] == sum(totals)
        assert stats["average_order_cents"] == round(sum(totals) / 3)
        assert sum(day["orders_count"] for day in stats["daily"]) == 3

    def test_empty_window(self, db_session):
        stats = order_statistics(7)
        assert stats["total_orders"] == 0
        assert stats["revenue_cents"] == 0
        assert stats["daily"] == []

    def test_period_must_be_positive(self, db_session):
        with pytest.raises(ValidationError):
            order_statistics(0)


# =============================================================================
# DELETE
# =============================================================================


class TestDeleteOrder:

    def test_delete_removes_items_events_and_keys(self, db_session, tee):
        order = place_order(make_request([(tee.id, 1)], idempotency_key="delete-me-0001"))

        delete_order(order.id)

        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(OrderEvent).count() == 0
        assert db_session.query(IdempotencyKey).count() == 0

    def test_delete_missing(self, db_session):
        with pytest.raises(NotFoundError):
            delete_order(999)
