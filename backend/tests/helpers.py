"""
Constructeurs partagés par les tests + faux PromotionStore en mémoire.
"""
import itertools
from datetime import datetime, timezone
from decimal import Decimal

from core.exceptions import UsageLimitExceeded
from models.order import OrderContext, OrderLineItem
from models.promotion import parse_promotion

UTC = timezone.utc
TENANT = "tenant_1"

# 12/06/2024 est un mercredi, 15/06 un samedi, 16/06 un dimanche
WEDNESDAY_NOON = datetime(2024, 6, 12, 12, 0, tzinfo=UTC)
SATURDAY_NOON = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)
SUNDAY_NOON = datetime(2024, 6, 16, 12, 0, tzinfo=UTC)

_ids = itertools.count(1)


def money(value) -> Decimal:
    return Decimal(str(value))


def line(menu_item_id, unit_price, quantity=1, category_id=None) -> OrderLineItem:
    return OrderLineItem(
        menu_item_id=menu_item_id,
        category_id=category_id,
        quantity=quantity,
        unit_price=money(unit_price),
    )


def promo_doc(kind: str, **fields) -> dict:
    """Document brut tel que stocké dans la collection promotions."""
    n = next(_ids)
    doc = {
        "promotion_id": f"promo_test_{n:04d}",
        "tenant_id":    TENANT,
        "name":         f"{kind} #{n}",
        "kind":         kind,
        "is_active":    True,
        "usage_count":  0,
        "created_at":   datetime(2024, 1, 1, tzinfo=UTC),
    }
    doc.update(fields)
    return doc


def make_promotion(kind: str, **fields):
    return parse_promotion(promo_doc(kind, **fields))


def make_context(items, **fields) -> OrderContext:
    fields.setdefault("evaluation_instant", WEDNESDAY_NOON)
    return OrderContext(tenant_id=fields.pop("tenant_id", TENANT), order_items=items, **fields)


class FakePromotionStore:
    """PromotionStore en mémoire ; le filtrage par dates reste au catalogue."""

    def __init__(self, documents=None):
        self.documents = list(documents or [])
        self.customer_usage = {}      # (promotion_id, client, tenant) -> compteur
        self.usage_rows = []
        self.fail_with = None

    def add(self, *documents) -> None:
        self.documents.extend(documents)

    def get(self, promotion_id: str) -> dict:
        return next(d for d in self.documents if d["promotion_id"] == promotion_id)

    async def fetch_active_promotions(self, tenant_id, as_of):
        if self.fail_with:
            raise self.fail_with
        return [
            dict(d) for d in self.documents
            if d["tenant_id"] == tenant_id and d.get("is_active", True)
        ]

    async def fetch_promotion_by_code(self, tenant_id, code):
        if self.fail_with:
            raise self.fail_with
        for d in self.documents:
            if d["tenant_id"] == tenant_id and d.get("promo_code") == code and d.get("is_active", True):
                return dict(d)
        return None

    async def fetch_customer_usage_count(self, promotion_id, customer_identifier, tenant_id):
        return self.customer_usage.get((promotion_id, customer_identifier, tenant_id), 0)

    async def record_usage(
        self, promotion_id, order_id, discount_amount, original_amount, final_amount,
        affected_items, customer_identifier=None, promo_code=None,
    ):
        if self.fail_with:
            raise self.fail_with
        doc = self.get(promotion_id)
        limit = doc.get("usage_limit_global")
        if limit is not None and doc.get("usage_count", 0) >= limit:
            raise UsageLimitExceeded(promotion_id, "Promotion usage limit reached")
        doc["usage_count"] = doc.get("usage_count", 0) + 1
        if customer_identifier:
            key = (promotion_id, customer_identifier, doc["tenant_id"])
            self.customer_usage[key] = self.customer_usage.get(key, 0) + 1
        self.usage_rows.append({
            "promotion_id":        promotion_id,
            "tenant_id":           doc["tenant_id"],
            "order_id":            order_id,
            "discount_amount":     discount_amount,
            "original_amount":     original_amount,
            "final_amount":        final_amount,
            "affected_items":      affected_items,
            "customer_identifier": customer_identifier,
            "promo_code":          promo_code,
            "applied_at":          datetime.now(UTC),
        })

    async def release_usage(self, promotion_id, order_id, customer_identifier=None):
        row = next(
            r for r in reversed(self.usage_rows)
            if r["promotion_id"] == promotion_id and r["order_id"] == order_id
        )
        self.usage_rows.remove(row)
        doc = self.get(promotion_id)
        doc["usage_count"] -= 1
        if customer_identifier:
            key = (promotion_id, customer_identifier, doc["tenant_id"])
            self.customer_usage[key] -= 1
            if not self.customer_usage[key]:
                del self.customer_usage[key]

    async def aggregate_usage(self, tenant_id, start, end):
        if self.fail_with:
            raise self.fail_with
        groups = {}
        for row in self.usage_rows:
            if row["tenant_id"] != tenant_id or not start <= row["applied_at"] <= end:
                continue
            group = groups.setdefault(row["promotion_id"], {
                "promotion_id":          row["promotion_id"],
                "name":                  self.get(row["promotion_id"]).get("name"),
                "kind":                  self.get(row["promotion_id"]).get("kind"),
                "total_uses":            0,
                "total_discount_given":  0.0,
                "total_original_amount": 0.0,
            })
            group["total_uses"] += 1
            group["total_discount_given"] += float(row["discount_amount"])
            group["total_original_amount"] += float(row["original_amount"])
        for group in groups.values():
            group["avg_discount_per_use"] = group["total_discount_given"] / group["total_uses"]
        return sorted(groups.values(), key=lambda g: (-g["total_uses"], g["promotion_id"]))
