from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient

from core.exceptions import PersistenceError
from helpers import TENANT, promo_doc

NOON = "2024-06-12T12:00:00Z"


def _body(**extra):
    body = {
        "order_items": [
            {"menu_item_id": "burger", "category_id": "mains", "quantity": 1, "unit_price": "50.00"},
        ],
        "evaluation_instant": NOON,
    }
    body.update(extra)
    return body


def _amount(value) -> Decimal:
    return Decimal(str(value))


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_calculate(client, store):
    store.add(promo_doc("PERCENTAGE_OFF", discount_value=10, max_discount_amount=3))

    response = client.post("/api/promotions/calculate", json=_body())

    assert response.status_code == 200
    data = response.json()
    assert _amount(data["total_discount"]) == Decimal("3")
    assert _amount(data["final_amount"]) == Decimal("47")
    assert len(data["applicable_promotions"]) == 1


def test_calculate_rejects_empty_order(client):
    response = client.post("/api/promotions/calculate", json=_body(order_items=[]))
    assert response.status_code == 422


def test_calculate_rejects_malformed_item(client):
    bad = _body(order_items=[{"menu_item_id": "burger", "quantity": 0, "unit_price": "5"}])
    assert client.post("/api/promotions/calculate", json=bad).status_code == 422


def test_storage_failure_maps_to_503(client, store):
    store.fail_with = PersistenceError("mongo down")
    assert client.post("/api/promotions/calculate", json=_body()).status_code == 503


def test_apply_code(client, store):
    store.add(promo_doc(
        "PERCENTAGE_OFF", discount_value=10, min_cart_value=20, requires_code=True, promo_code="SAVE10",
    ))

    ok = client.post("/api/promotions/apply-code", json=_body(promo_code="save10"))
    assert ok.status_code == 200
    assert _amount(ok.json()["total_discount"]) == Decimal("5")

    unknown = client.post("/api/promotions/apply-code", json=_body(promo_code="NOPE"))
    assert unknown.status_code == 404

    small = _body(
        promo_code="SAVE10",
        order_items=[{"menu_item_id": "cola", "quantity": 1, "unit_price": "3.00"}],
    )
    refused = client.post("/api/promotions/apply-code", json=small)
    assert refused.status_code == 400
    assert "Minimum order value" in refused.json()["detail"]


def test_active_listing_hides_code_promotions(client, store):
    auto = promo_doc("PERCENTAGE_OFF", discount_value=10)
    coded = promo_doc("COUPON", discount_value=10, promo_code="WELCOME10")
    store.add(auto, coded)

    listed = client.get("/api/promotions/active").json()["promotions"]
    assert [p["promotion_id"] for p in listed] == [auto["promotion_id"]]

    listed = client.get("/api/promotions/active", params={"include_code_required": True}).json()["promotions"]
    assert {p["promotion_id"] for p in listed} == {auto["promotion_id"], coded["promotion_id"]}


def test_preview_is_public(app, store):
    from core.dependencies import get_current_user

    app.dependency_overrides.pop(get_current_user)
    store.add(promo_doc("FIXED_OFF", discount_value=5))

    response = TestClient(app).post("/api/promotions/preview", json={
        "tenant_id": TENANT,
        "order_items": [{"menu_item_id": "burger", "quantity": 2, "unit_price": "10.00"}],
        "evaluation_instant": NOON,
    })
    assert response.status_code == 200
    assert _amount(response.json()["total_discount"]) == Decimal("5")
    assert store.usage_rows == []


def test_staff_routes_require_a_token(app):
    from core.dependencies import get_current_user

    app.dependency_overrides.pop(get_current_user)
    response = TestClient(app).post("/api/promotions/calculate", json=_body())
    assert response.status_code == 401


def test_commit_records_usage(client, store):
    doc = promo_doc("FIXED_OFF", discount_value=5)
    store.add(doc)

    response = client.post(
        "/api/promotions/orders/ord_42/commit",
        json=_body(customer={"identifier": "+15551234567"}),
    )

    assert response.status_code == 200
    [row] = store.usage_rows
    assert row["order_id"] == "ord_42"
    assert row["promotion_id"] == doc["promotion_id"]


def test_commit_is_reserved_to_checkout_roles(client, store, staff_user):
    staff_user["role"] = "WAITER"
    response = client.post("/api/promotions/orders/ord_42/commit", json=_body())
    assert response.status_code == 403
    assert store.usage_rows == []


def test_bearer_token_resolves_staff_tenant(app, store, monkeypatch):
    from unittest.mock import AsyncMock, MagicMock

    from core import dependencies
    from core.security import create_access_token

    users = MagicMock()
    users.users.find_one = AsyncMock(return_value={
        "user_id": "usr_waiter01", "tenant_id": TENANT, "role": "WAITER", "is_active": True,
    })
    monkeypatch.setattr(dependencies, "db", users)
    app.dependency_overrides.pop(dependencies.get_current_user)
    store.add(promo_doc("FIXED_OFF", discount_value=5))

    token = create_access_token({"sub": "usr_waiter01"})
    response = TestClient(app).post(
        "/api/promotions/calculate", json=_body(), headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    assert _amount(response.json()["total_discount"]) == Decimal("5")
    users.users.find_one.assert_awaited_once_with({"user_id": "usr_waiter01"}, {"_id": 0})


# ── Vitrine publique ──────────────────────────────────────────────────────────

def test_public_listing_needs_no_token(app, store):
    from core.dependencies import get_current_user

    app.dependency_overrides.pop(get_current_user)
    auto = promo_doc("HAPPY_HOUR", discount_value=20, usage_limit_global=100,
                     time_window={"start": "16:00", "end": "18:00"})
    coded = promo_doc("COUPON", discount_value=10, promo_code="WELCOME10")
    elsewhere = promo_doc("FIXED_OFF", discount_value=5, tenant_id="tenant_2")
    store.add(auto, coded, elsewhere)

    response = TestClient(app).get("/api/promotions/public/active", params={"tenant_id": TENANT})

    assert response.status_code == 200
    [listed] = response.json()["promotions"]
    assert listed["promotion_id"] == auto["promotion_id"]
    assert listed["time_window"] == {"start": "16:00:00", "end": "18:00:00"}
    for internal in ("tenant_id", "usage_count", "usage_limit_global", "promo_code"):
        assert internal not in listed


def test_public_listing_requires_a_tenant(client):
    assert client.get("/api/promotions/public/active").status_code == 422


# ── Statistiques ──────────────────────────────────────────────────────────────

def _usage(promotion_id, discount, original, days_ago=1, tenant_id=TENANT):
    return {
        "promotion_id":        promotion_id,
        "tenant_id":           tenant_id,
        "order_id":            f"ord_{promotion_id}_{days_ago}",
        "discount_amount":     Decimal(str(discount)),
        "original_amount":     Decimal(str(original)),
        "final_amount":        Decimal(str(original)) - Decimal(str(discount)),
        "affected_items":      [],
        "customer_identifier": None,
        "promo_code":          None,
        "applied_at":          datetime.now(timezone.utc) - timedelta(days=days_ago),
    }


def _instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_analytics_over_the_last_thirty_days(client, store, staff_user):
    staff_user["role"] = "MANAGER"
    popular = promo_doc("PERCENTAGE_OFF", discount_value=10, name="Lunch 10%")
    rare = promo_doc("FIXED_OFF", discount_value=2, name="Two off")
    unused = promo_doc("CART_DISCOUNT", discount_value=5, name="Cart 5%")
    store.add(popular, rare, unused)
    store.usage_rows.extend([
        _usage(popular["promotion_id"], "5.00", "50.00", days_ago=1),
        _usage(popular["promotion_id"], "3.00", "30.00", days_ago=3),
        _usage(rare["promotion_id"], "2.00", "20.00", days_ago=2),
        _usage(rare["promotion_id"], "2.00", "20.00", days_ago=45),
        _usage(rare["promotion_id"], "2.00", "20.00", days_ago=2, tenant_id="tenant_2"),
    ])

    response = client.get("/api/promotions/analytics")

    assert response.status_code == 200
    data = response.json()
    rows = data["analytics"]
    assert [r["promotion_id"] for r in rows] == [
        popular["promotion_id"], rare["promotion_id"], unused["promotion_id"],
    ]
    assert rows[0]["name"] == "Lunch 10%"
    assert rows[0]["total_uses"] == 2
    assert _amount(rows[0]["total_discount_given"]) == Decimal("8")
    assert _amount(rows[0]["total_original_amount"]) == Decimal("80")
    assert _amount(rows[0]["avg_discount_per_use"]) == Decimal("4")
    assert rows[1]["total_uses"] == 1
    assert rows[2]["total_uses"] == 0
    period = data["period"]
    assert _instant(period["end"]) - _instant(period["start"]) == timedelta(days=30)


def test_analytics_with_explicit_period(client, store, staff_user):
    staff_user["role"] = "TENANT_ADMIN"
    doc = promo_doc("FIXED_OFF", discount_value=2)
    store.add(doc)
    store.usage_rows.extend([
        _usage(doc["promotion_id"], "2.00", "20.00", days_ago=10),
        _usage(doc["promotion_id"], "2.00", "20.00", days_ago=1),
    ])
    end = datetime.now(timezone.utc) - timedelta(days=5)
    start = end - timedelta(days=10)

    response = client.get("/api/promotions/analytics", params={
        "start_date": start.isoformat(), "end_date": end.isoformat(),
    })

    assert response.status_code == 200
    [row] = response.json()["analytics"]
    assert row["total_uses"] == 1
    assert _instant(response.json()["period"]["start"]) == start


def test_analytics_rejects_inverted_period(client, staff_user):
    staff_user["role"] = "MANAGER"
    response = client.get("/api/promotions/analytics", params={
        "start_date": "2024-06-30T00:00:00Z", "end_date": "2024-06-01T00:00:00Z",
    })
    assert response.status_code == 422


def test_analytics_is_reserved_to_managers(client):
    assert client.get("/api/promotions/analytics").status_code == 403
