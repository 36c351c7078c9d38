from __future__ import annotations

from decimal import Decimal

import pytest
from sqlmodel import func, select

from freshmart.api.errors import (
    AlreadyDelivered,
    AlreadyPaid,
    Forbidden,
    InvalidTransition,
    NotCancellable,
    NotFound,
    OutOfStock,
    ValidationError,
)
from freshmart.enums import OrderSort, OrderStatus
from freshmart.models import Order, StatusHistoryEntry, utc_now
from freshmart.services.orders import CheckoutItem, build_timeline, can_transition

ADDRESS = {"address": "12 Ring Road", "city": "Accra", "phone": "0241111111"}
SCHEDULE = {"preferred_day": "saturday", "preferred_time": "morning"}


async def _checkout(services, db, user, payment, items=None, **kwargs):
    params = {
        "user_id": user.id,
        "items": items,
        "shipping_address": ADDRESS,
        "payment_method": "mobile_money",
        "delivery_schedule": SCHEDULE,
        "payment_id": payment.id,
    }
    params.update(kwargs)
    return await services.orders.create_order(db, **params)


async def _order_count(db) -> int:
    return (await db.exec(select(func.count()).select_from(Order))).one()


async def _pending_order(
    db, user, payment, product, quantity=2, is_paid=False, stock_decremented=False
) -> Order:
    """直接写入一条 Pending 订单（模拟线下/后台创建的未支付订单）"""
    order = Order(
        user_id=user.id,
        payment_id=payment.id,
        order_items=[
            {
                "name": product.name,
                "quantity": quantity,
                "unit": product.unit,
                "image": product.image,
                "price": str(product.price),
                "product": product.id,
                "stock_decremented": stock_decremented,
            }
        ],
        shipping_address=ADDRESS,
        delivery_schedule=SCHEDULE,
        items_price=product.price * quantity,
        delivery_fee=Decimal("5"),
        total_price=product.price * quantity + Decimal("5"),
        is_paid=is_paid,
        status=OrderStatus.pending,
    )
    db.add(order)
    await db.commit()
    return order


# ------------------------------------------------------------------
# 下单
# ------------------------------------------------------------------


async def test_checkout_persists_snapshot_and_pricing(services, db, make_user, make_product, make_payment, fake_redis):
    user = await make_user(cart_items=[{"product": 1, "quantity": 2}])
    tomatoes = await make_product("Tomatoes", price=Decimal("12.50"), count_in_stock=10)
    yam = await make_product("Yam", price=Decimal("7.50"), unit="tuber", count_in_stock=3)
    payment = await make_payment(user)

    order = await _checkout(
        services,
        db,
        user,
        payment,
        [CheckoutItem(product_id=tomatoes.id, quantity=2), CheckoutItem(product_id=yam.id, quantity=1)],
        delivery_note="Call on arrival",
    )

    assert OrderStatus(order.status) == OrderStatus.processing
    assert order.is_paid is True
    assert order.paid_at is not None
    assert order.items_price == Decimal("32.50")
    # 32.50 < 50：accra 5 + 小额附加 2
    assert order.delivery_fee == Decimal("7")
    assert order.total_price == order.items_price + order.delivery_fee
    assert order.items_price == sum(i.price * i.quantity for i in order.items())
    assert [i.unit for i in order.items()] == ["kg", "tuber"]
    assert order.delivery_note == "Call on arrival"

    history = order.history()
    assert len(history) == 1
    assert history[0].status == OrderStatus.processing
    assert history[0].changed_by == str(user.id)

    await db.refresh(tomatoes)
    await db.refresh(yam)
    await db.refresh(user)
    await db.refresh(payment)
    assert tomatoes.count_in_stock == 8
    assert yam.count_in_stock == 2
    assert user.cart_items == []
    assert user.order_ids == [order.id]
    assert payment.order_id == order.id

    assert fake_redis.events() == ["order_placed", "admin_new_order"]


async def test_snapshot_survives_catalog_changes(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product(price=Decimal("20.00"))
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    product.price = Decimal("99.00")
    product.name = "Renamed"
    db.add(product)
    await db.commit()

    reloaded = await db.get(Order, order.id, populate_existing=True)
    assert reloaded.items()[0].price == Decimal("20.00")
    assert reloaded.items()[0].name == "Tomatoes"
    assert reloaded.total_price == Decimal("20.00") + Decimal("7")


async def test_checkout_free_delivery(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product(price=Decimal("60.00"))
    payment = await make_payment(user)

    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=2)])

    assert order.items_price == Decimal("120.00")
    assert order.delivery_fee == Decimal("0")
    assert order.total_price == Decimal("120.00")


async def test_out_of_stock_lists_every_offender_and_changes_nothing(
    services, db, make_user, make_product, make_payment, fake_redis
):
    user = await make_user()
    fresh = await make_product("Pepper", count_in_stock=5)
    gone = await make_product("Okra", count_in_stock=0, is_available=False)
    payment = await make_payment(user)

    with pytest.raises(OutOfStock) as exc:
        await _checkout(
            services,
            db,
            user,
            payment,
            [CheckoutItem(product_id=fresh.id, quantity=1), CheckoutItem(product_id=gone.id, quantity=1)],
        )

    assert exc.value.items == [{"product": gone.id, "name": "Okra", "quantity": 1, "available": 0}]
    assert exc.value.data == {"out_of_stock_items": exc.value.items}
    assert await _order_count(db) == 0
    await db.refresh(fresh)
    assert fresh.count_in_stock == 5
    assert fake_redis.messages == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"items": []},
        {"shipping_address": {"address": "12 Ring Road", "city": "", "phone": "024"}},
        {"shipping_address": {"address": "12 Ring Road", "city": "Accra"}},
        {"shipping_address": None},
        {"delivery_schedule": None},
        {"payment_id": None},
    ],
)
async def test_checkout_validation_errors(services, db, make_user, make_product, make_payment, overrides):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)

    with pytest.raises(ValidationError):
        params = {"items": [CheckoutItem(product_id=product.id, quantity=1)], **overrides}
        await _checkout(services, db, user, payment, **params)
    assert await _order_count(db) == 0


async def test_checkout_rejects_unknown_product(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product(count_in_stock=4)
    payment = await make_payment(user)

    with pytest.raises(ValidationError) as exc:
        await _checkout(
            services,
            db,
            user,
            payment,
            [CheckoutItem(product_id=product.id, quantity=1), CheckoutItem(product_id=42, quantity=1)],
        )

    assert exc.value.data == {"missing_products": [42]}
    await db.refresh(product)
    assert product.count_in_stock == 4


async def test_checkout_rejects_non_positive_quantity(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)

    with pytest.raises(ValidationError):
        await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=0)])


async def test_checkout_requires_own_unlinked_paid_payment(
    services, db, make_user, make_product, make_payment
):
    user = await make_user()
    other = await make_user(first_name="Kofi")
    product = await make_product()
    items = [CheckoutItem(product_id=product.id, quantity=1)]

    foreign = await make_payment(other)
    with pytest.raises(ValidationError):
        await _checkout(services, db, user, foreign, items)

    pending = await make_payment(user, status="pending")
    with pytest.raises(ValidationError):
        await _checkout(services, db, user, pending, items)

    payment = await make_payment(user)
    await _checkout(services, db, user, payment, items)
    with pytest.raises(ValidationError) as exc:
        await _checkout(services, db, user, payment, items)
    assert exc.value.code == 400104


async def test_checkout_survives_failed_stock_decrement(
    services, db, make_user, make_product, make_payment
):
    """扣减失败（并发售罄）不影响已持久化的订单"""
    user = await make_user()
    product = await make_product(count_in_stock=1)
    payment = await make_payment(user)

    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=3)])

    assert await db.get(Order, order.id) is not None
    await db.refresh(product)
    assert product.count_in_stock == 1
    await db.refresh(user)
    assert user.order_ids == [order.id]


async def test_checkout_survives_notification_failure(
    services, db, make_user, make_product, make_payment, fake_redis
):
    fake_redis.fail_xadd = True
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)

    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    assert OrderStatus(order.status) == OrderStatus.processing
    assert fake_redis.messages == []


# ------------------------------------------------------------------
# 查询
# ------------------------------------------------------------------


async def test_get_order_owner_only(services, db, make_user, make_product, make_payment):
    user = await make_user()
    stranger = await make_user(first_name="Esi")
    product = await make_product()
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    assert (await services.orders.get_order(db, order.id, user.id)).id == order.id
    with pytest.raises(Forbidden):
        await services.orders.get_order(db, order.id, stranger.id)
    with pytest.raises(NotFound):
        await services.orders.get_order(db, 1, user.id)


async def test_list_my_orders_filters_and_sorts(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product(price=Decimal("10.00"), count_in_stock=50)
    cheap = await _checkout(
        services, db, user, await make_payment(user), [CheckoutItem(product_id=product.id, quantity=1)]
    )
    pricey = await _checkout(
        services, db, user, await make_payment(user), [CheckoutItem(product_id=product.id, quantity=5)]
    )
    await services.orders.update_order_status(
        db, pricey.id, OrderStatus.out_for_delivery, actor_id="admin"
    )

    rows, count = await services.orders.list_my_orders(db, user.id, sort=OrderSort.price_desc)
    assert count == 2
    assert [o.id for o in rows] == [pricey.id, cheap.id]

    rows, count = await services.orders.list_my_orders(db, user.id, status=OrderStatus.processing)
    assert count == 1
    assert rows[0].id == cheap.id

    rows, count = await services.orders.list_my_orders(db, user.id, page=2, page_size=1)
    assert count == 2
    assert len(rows) == 1


# ------------------------------------------------------------------
# 状态流转
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (OrderStatus.pending, OrderStatus.processing, True),
        (OrderStatus.pending, OrderStatus.cancelled, True),
        (OrderStatus.pending, OrderStatus.delivered, False),
        (OrderStatus.processing, OrderStatus.out_for_delivery, True),
        (OrderStatus.processing, OrderStatus.pending, False),
        (OrderStatus.out_for_delivery, OrderStatus.delivered, True),
        (OrderStatus.out_for_delivery, OrderStatus.cancelled, False),
        (OrderStatus.delivered, OrderStatus.cancelled, False),
        (OrderStatus.cancelled, OrderStatus.processing, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed
    assert can_transition(current.value, target.value) is allowed


async def test_happy_path_to_delivered(services, db, make_user, make_product, make_payment, fake_redis):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    await services.orders.update_order_status(
        db, order.id, OrderStatus.out_for_delivery, actor_id="77", notes="Rider assigned"
    )
    order = await services.orders.mark_order_delivered(db, order.id, actor_id="77")

    assert OrderStatus(order.status) == OrderStatus.delivered
    assert order.is_delivered is True
    assert order.delivered_at is not None
    statuses = [h.status for h in order.history()]
    assert statuses == [OrderStatus.processing, OrderStatus.out_for_delivery, OrderStatus.delivered]
    assert order.history()[1].notes == "Rider assigned"
    assert order.history()[1].changed_by == "77"

    changed = [f for _, f in fake_redis.messages if f["event"] == "order_status_changed"]
    assert [(f["old_status"], f["status"]) for f in changed] == [
        ("Processing", "Out for Delivery"),
        ("Out for Delivery", "Delivered"),
    ]

    with pytest.raises(AlreadyDelivered):
        await services.orders.mark_order_delivered(db, order.id)


async def test_invalid_transition_leaves_order_unchanged(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _pending_order(db, user, payment, product)

    with pytest.raises(InvalidTransition):
        await services.orders.update_order_status(db, order.id, OrderStatus.delivered, actor_id="1")

    await db.refresh(order)
    assert OrderStatus(order.status) == OrderStatus.pending
    assert order.status_history == []


async def test_admin_cancel_of_paid_order_restores_stock(
    services, db, make_user, make_product, make_payment
):
    user = await make_user()
    product = await make_product(count_in_stock=2)
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=2)])
    await db.refresh(product)
    assert product.count_in_stock == 0
    assert product.is_available is False
    assert order.items()[0].stock_decremented is True

    order = await services.orders.update_order_status(
        db, order.id, OrderStatus.cancelled, actor_id="9", notes="Customer called"
    )

    assert OrderStatus(order.status) == OrderStatus.cancelled
    assert order.cancelled_by == "9"
    assert order.cancellation_reason == "Customer called"
    assert order.cancelled_at is not None
    await db.refresh(product)
    assert product.count_in_stock == 2
    assert product.is_available is True
    assert order.items()[0].stock_decremented is False


async def test_cancel_skips_items_whose_decrement_failed(
    services, db, make_user, make_product, make_payment, caplog
):
    user = await make_user()
    product = await make_product(count_in_stock=1)
    payment = await make_payment(user)

    # 可售检查通过，但扣减时库存不足：订单仍然创建，扣减失败只记录日志
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=3)])
    assert "decrement stock" in caplog.text
    assert order.items()[0].stock_decremented is False
    await db.refresh(product)
    assert product.count_in_stock == 1

    await services.orders.update_order_status(db, order.id, OrderStatus.cancelled, actor_id="9")

    await db.refresh(product)
    assert product.count_in_stock == 1
    assert product.is_available is True


async def test_customer_cancel_unpaid_pending_restores_stock(
    services, db, make_user, make_product, make_payment, fake_redis
):
    user = await make_user()
    product = await make_product(count_in_stock=5)
    payment = await make_payment(user)
    order = await _pending_order(db, user, payment, product, quantity=2, stock_decremented=True)
    await services.inventory.decrement_stock(session=db, product_id=product.id, quantity=2)
    assert product.count_in_stock == 3

    order = await services.orders.cancel_order(db, order.id, user.id, "Changed my mind")

    assert OrderStatus(order.status) == OrderStatus.cancelled
    assert order.cancelled_by == str(user.id)
    assert order.history()[-1].notes == "Changed my mind"
    await db.refresh(product)
    assert product.count_in_stock == 5
    assert fake_redis.events() == ["order_status_changed"]


async def test_customer_cannot_cancel_paid_order(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    with pytest.raises(NotCancellable):
        await services.orders.cancel_order(db, order.id, user.id, "too slow")

    await db.refresh(order)
    assert OrderStatus(order.status) == OrderStatus.processing
    assert order.cancelled_at is None
    assert len(order.status_history) == 1


async def test_customer_cancel_checks_owner_and_status(services, db, make_user, make_product, make_payment):
    user = await make_user()
    stranger = await make_user(first_name="Yaw")
    product = await make_product()
    payment = await make_payment(user)
    order = await _pending_order(db, user, payment, product)

    with pytest.raises(Forbidden):
        await services.orders.cancel_order(db, order.id, stranger.id)

    await services.orders.update_order_status(db, order.id, OrderStatus.cancelled, actor_id="1")
    with pytest.raises(NotCancellable):
        await services.orders.cancel_order(db, order.id, user.id)


async def test_mark_paid_is_guarded(services, db, make_user, make_product, make_payment, fake_redis):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _pending_order(db, user, payment, product)

    order = await services.orders.mark_order_paid(db, order.id, {"reference": "abc"}, actor_id="5")
    await db.refresh(order)
    paid_at = order.paid_at

    assert order.is_paid is True
    assert paid_at is not None
    assert OrderStatus(order.status) == OrderStatus.processing
    assert order.payment_details == {"reference": "abc"}
    assert fake_redis.events() == ["order_status_changed"]

    with pytest.raises(AlreadyPaid):
        await services.orders.mark_order_paid(db, order.id)

    await db.refresh(order)
    assert order.paid_at == paid_at
    assert len(order.status_history) == 1
    assert fake_redis.events() == ["order_status_changed"]


async def test_mark_paid_on_cancelled_order(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _pending_order(db, user, payment, product)
    await services.orders.update_order_status(db, order.id, OrderStatus.cancelled, actor_id="1")

    with pytest.raises(InvalidTransition):
        await services.orders.mark_order_paid(db, order.id)


async def test_missing_order_operations(services, db):
    with pytest.raises(NotFound):
        await services.orders.mark_order_paid(db, 1)
    with pytest.raises(NotFound):
        await services.orders.mark_order_delivered(db, 1)
    with pytest.raises(NotFound):
        await services.orders.update_order_status(db, 1, OrderStatus.processing, actor_id="1")


async def test_timeline_follows_history(services, db, make_user, make_product, make_payment):
    user = await make_user()
    product = await make_product()
    payment = await make_payment(user)
    order = await _checkout(services, db, user, payment, [CheckoutItem(product_id=product.id, quantity=1)])

    timeline = build_timeline(order)
    assert [t["status"] for t in timeline] == [
        "Order Placed",
        "Payment",
        "Processing",
        "Out for Delivery",
        "Delivered",
    ]
    assert [t["completed"] for t in timeline] == [True, True, True, False, False]
    assert timeline[1]["description"] == "Paid via mobile_money"
    assert timeline[2]["date"] is not None
    assert timeline[4]["description"] == "Expected delivery"

    order = await services.orders.update_order_status(
        db, order.id, OrderStatus.delivered, actor_id="1"
    )
    assert all(t["completed"] for t in build_timeline(order) if t["status"] != "Out for Delivery")


def test_history_entries_serialize_as_json():
    order = Order(
        user_id=1,
        payment_id=1,
        order_items=[],
        shipping_address=ADDRESS,
        delivery_schedule=SCHEDULE,
        items_price=Decimal("0"),
        total_price=Decimal("0"),
    )
    order.append_history(
        StatusHistoryEntry(status=OrderStatus.pending, changed_at=utc_now(), changed_by="system")
    )
    assert order.status_history[0]["status"] == "Pending"
    assert isinstance(order.status_history[0]["changed_at"], str)
