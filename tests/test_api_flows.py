from __future__ import annotations

from decimal import Decimal

from freshmart.core.config import settings
from freshmart.enums import OrderStatus
from freshmart.models import Order, Product
from freshmart.services.orders import CheckoutItem

API = settings.API_V1_STR

ADDRESS = {"address": "12 Oxford Street", "city": "Accra", "region": "Greater Accra", "phone": "0245555555"}
SCHEDULE = {"preferred_day": "saturday", "preferred_time": "afternoon"}


def _checkout_body(product: Product, payment_id: int, quantity: int = 2) -> dict:
    return {
        "order_items": [{"product_id": product.id, "quantity": quantity}],
        "shipping_address": ADDRESS,
        "payment_method": "mobile_money",
        "delivery_schedule": SCHEDULE,
        "payment_id": payment_id,
        "delivery_note": "Call on arrival",
    }


async def test_health_check(client):
    r = await client.get(f"{API}/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True

    r = await client.get(f"{API}/utils/ready/")
    assert r.status_code == 200
    assert r.json() is True


async def test_invalid_token_is_rejected(client):
    r = await client.get(f"{API}/orders/mine", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["code"] == 401000


async def test_non_admin_cannot_use_admin_routes(client, make_user, headers_for):
    user = await make_user()
    r = await client.get(f"{API}/admin/orders", headers=headers_for(user))
    assert r.status_code == 403
    assert r.json()["code"] == 403001


async def test_pay_then_checkout_flow(client, gateway, fake_redis, make_user, make_product, headers_for):
    user = await make_user()
    product = await make_product(count_in_stock=5)
    headers = headers_for(user)

    r = await client.post(f"{API}/payments/initialize", headers=headers)
    assert r.status_code == 200
    reference = r.json()["data"]["reference"]

    # 2 x 10.00 + Accra 5 + 小额附加费 2
    gateway.succeed(reference, 2700)
    r = await client.post(
        f"{API}/payments/verify/{reference}", headers=headers, json={"amount": "27"}
    )
    assert r.status_code == 200
    payment = r.json()["data"]
    assert payment["status"] == "paid"
    assert payment["transaction_ref"] == reference

    r = await client.post(f"{API}/orders", headers=headers, json=_checkout_body(product, payment["id"]))
    assert r.status_code == 201
    body = r.json()
    assert body["code"] == 0
    order = body["data"]
    assert order["status"] == "Processing"
    assert order["is_paid"] is True
    assert Decimal(order["items_price"]) == Decimal("20")
    assert Decimal(order["delivery_fee"]) == Decimal("7")
    assert Decimal(order["total_price"]) == Decimal("27")
    assert order["order_number"] == str(order["id"])[-8:]
    assert order["order_items"][0]["name"] == "Tomatoes"
    assert fake_redis.events() == ["order_placed", "admin_new_order"]

    r = await client.get(f"{API}/orders/{order['id']}", headers=headers)
    assert r.status_code == 200
    detail = r.json()["data"]
    steps = {step["status"]: step for step in detail["timeline"]}
    assert steps["Order Placed"]["completed"] is True
    assert steps["Payment"]["completed"] is True
    assert steps["Processing"]["completed"] is True
    assert steps["Delivered"]["completed"] is False

    r = await client.get(f"{API}/orders/mine", headers=headers)
    listing = r.json()["data"]
    assert listing["count"] == 1
    assert listing["data"][0]["id"] == order["id"]


async def test_declined_payment_returns_gateway_data(client, make_user, headers_for):
    user = await make_user()
    r = await client.post(
        f"{API}/payments/verify/unknown-ref", headers=headers_for(user), json={"amount": "10"}
    )
    assert r.status_code == 402
    body = r.json()
    assert body["code"] == 402301
    assert body["data"]["gateway"]["message"] == "Transaction reference not found"


async def test_out_of_stock_lists_items(client, make_user, make_product, make_payment, headers_for):
    user = await make_user()
    product = await make_product(name="Plantain", count_in_stock=0, is_available=False)
    payment = await make_payment(user)

    r = await client.post(
        f"{API}/orders", headers=headers_for(user), json=_checkout_body(product, payment.id, quantity=3)
    )

    assert r.status_code == 409
    body = r.json()
    assert body["code"] == 409201
    assert body["data"]["out_of_stock_items"] == [
        {"product": product.id, "name": "Plantain", "quantity": 3, "available": 0}
    ]


async def test_incomplete_checkout_is_business_error(client, make_user, make_payment, headers_for):
    user = await make_user()
    payment = await make_payment(user)

    r = await client.post(
        f"{API}/orders",
        headers=headers_for(user),
        json={"order_items": [], "payment_id": payment.id},
    )
    assert r.status_code == 400
    assert r.json()["code"] == 400101


async def test_other_customer_cannot_view_order(
    client, services, db, make_user, make_product, make_payment, headers_for
):
    owner = await make_user()
    stranger = await make_user(first_name="Yaw")
    order = await _place_order(services, db, owner, await make_product(), await make_payment(owner))

    r = await client.get(f"{API}/orders/{order.id}", headers=headers_for(stranger))
    assert r.status_code == 403
    assert r.json()["code"] == 403201

    r = await client.get(f"{API}/orders/1", headers=headers_for(owner))
    assert r.status_code == 404


async def test_paid_order_cannot_be_cancelled_by_customer(
    client, services, db, make_user, make_product, make_payment, headers_for
):
    user = await make_user()
    order = await _place_order(services, db, user, await make_product(), await make_payment(user))

    r = await client.put(
        f"{API}/orders/{order.id}/cancel", headers=headers_for(user), json={"reason": "changed mind"}
    )
    assert r.status_code == 409
    assert r.json()["code"] == 409205


async def test_admin_moves_order_through_delivery(
    client, services, db, fake_redis, make_user, make_product, make_payment, headers_for
):
    user = await make_user()
    admin = await make_user(first_name="Esi", is_admin=True)
    order = await _place_order(services, db, user, await make_product(), await make_payment(user))
    headers = headers_for(admin)

    r = await client.put(
        f"{API}/admin/orders/{order.id}/status",
        headers=headers,
        json={"status": "Out for Delivery", "notes": "Rider assigned"},
    )
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "Out for Delivery"

    r = await client.put(
        f"{API}/admin/orders/{order.id}/status", headers=headers, json={"status": "Cancelled"}
    )
    assert r.status_code == 409
    assert r.json()["code"] == 409206

    r = await client.put(f"{API}/admin/orders/{order.id}/deliver", headers=headers)
    assert r.status_code == 200
    delivered = r.json()["data"]
    assert delivered["is_delivered"] is True
    assert delivered["status_history"][-1]["changed_by"] == str(admin.id)

    r = await client.put(f"{API}/admin/orders/{order.id}/deliver", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == 409204

    r = await client.get(
        f"{API}/admin/orders", headers=headers, params={"status": "Delivered"}
    )
    assert r.json()["data"]["count"] == 1
    assert fake_redis.events().count("order_status_changed") == 2


async def test_admin_status_update_validates_body(client, make_user, headers_for):
    admin = await make_user(is_admin=True)
    r = await client.put(
        f"{API}/admin/orders/1/status", headers=headers_for(admin), json={"status": "Lost"}
    )
    assert r.status_code == 422
    assert r.json()["code"] == 422000


async def test_admin_mark_paid(client, db, make_user, make_payment, headers_for):
    user = await make_user()
    admin = await make_user(is_admin=True)
    payment = await make_payment(user)
    order = Order(
        user_id=user.id,
        payment_id=payment.id,
        order_items=[],
        shipping_address=ADDRESS,
        delivery_schedule=SCHEDULE,
        items_price=Decimal("50"),
        delivery_fee=Decimal("5"),
        total_price=Decimal("55"),
    )
    db.add(order)
    await db.commit()

    r = await client.put(
        f"{API}/admin/orders/{order.id}/pay",
        headers=headers_for(admin),
        json={"payment_details": {"transaction_ref": "cash-001"}},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["is_paid"] is True
    assert data["status"] == "Processing"
    assert data["payment_details"] == {"transaction_ref": "cash-001"}

    r = await client.put(f"{API}/admin/orders/{order.id}/pay", headers=headers_for(admin))
    assert r.status_code == 409
    assert r.json()["code"] == 409203


async def test_admin_refund_flow(
    client, services, db, gateway, make_user, make_product, make_payment, headers_for
):
    user = await make_user()
    admin = await make_user(is_admin=True)
    payment = await make_payment(user, transaction_ref="ref-api-refund")
    order = await _place_order(services, db, user, await make_product(), payment)
    headers = headers_for(admin)

    r = await client.post(f"{API}/admin/payments/ref-api-refund/refund", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "refunded"
    assert gateway.refunds == ["ref-api-refund"]

    r = await client.get(f"{API}/admin/orders/{order.id}", headers=headers)
    assert r.json()["data"]["status"] == OrderStatus.cancelled.value

    r = await client.post(f"{API}/admin/payments/ref-api-refund/refund", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == 409301

    r = await client.get(f"{API}/admin/payments", headers=headers, params={"status": "refunded"})
    assert r.json()["data"]["count"] == 1

    r = await client.put(
        f"{API}/admin/payments/{payment.id}/status", headers=headers, json={"status": "refunded"}
    )
    assert r.status_code == 400
    assert r.json()["code"] == 400301

    r = await client.get(f"{API}/admin/payments/{payment.id}", headers=headers)
    assert r.json()["data"]["transaction_ref"] == "ref-api-refund"


async def _place_order(services, db, user, product, payment) -> Order:
    return await services.orders.create_order(
        db,
        user_id=user.id,
        items=[CheckoutItem(product_id=product.id, quantity=1)],
        shipping_address=ADDRESS,
        payment_method="mobile_money",
        delivery_schedule=SCHEDULE,
        payment_id=payment.id,
    )
