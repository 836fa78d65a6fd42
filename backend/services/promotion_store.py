"""
Port de persistance du moteur de promotions + adaptateur MongoDB (Motor).

Le moteur ne dépend que du protocole PromotionStore ; les tests utilisent
un faux en mémoire, la prod utilise MongoPromotionStore.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Protocol

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from core.exceptions import PersistenceError, UsageLimitExceeded
from core.utils import mask_identifier

logger = logging.getLogger(__name__)


class PromotionStore(Protocol):
    async def fetch_active_promotions(self, tenant_id: str, as_of: datetime) -> List[dict]: ...

    async def fetch_promotion_by_code(self, tenant_id: str, code: str) -> Optional[dict]: ...

    async def fetch_customer_usage_count(
        self, promotion_id: str, customer_identifier: str, tenant_id: str,
    ) -> int: ...

    async def record_usage(
        self,
        promotion_id: str,
        order_id: str,
        discount_amount: Decimal,
        original_amount: Decimal,
        final_amount: Decimal,
        affected_items: List[dict],
        customer_identifier: Optional[str] = None,
        promo_code: Optional[str] = None,
    ) -> None: ...

    async def release_usage(
        self, promotion_id: str, order_id: str, customer_identifier: Optional[str] = None,
    ) -> None: ...

    async def aggregate_usage(self, tenant_id: str, start: datetime, end: datetime) -> List[dict]: ...


def _usage_id() -> str:
    return f"puse_{uuid.uuid4().hex[:12]}"


class MongoPromotionStore:
    """Collections : promotions, promotion_usage, customer_promotion_usage."""

    def __init__(self, database, strict_limits: Optional[bool] = None):
        self._db = database
        self._strict = settings.STRICT_USAGE_LIMITS if strict_limits is None else strict_limits

    async def fetch_active_promotions(self, tenant_id: str, as_of: datetime) -> List[dict]:
        # Les bornes active_from / active_until peuvent être des dates "YYYY-MM-DD"
        # en heure locale : le catalogue les compare après parsing.
        query = {"tenant_id": tenant_id, "is_active": True}
        try:
            cursor = self._db.promotions.find(query, {"_id": 0}).sort(
                [("priority", -1), ("created_at", 1)]
            )
            return await cursor.to_list(length=settings.CATALOG_FETCH_LIMIT)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not load promotions for tenant {tenant_id}") from exc

    async def fetch_promotion_by_code(self, tenant_id: str, code: str) -> Optional[dict]:
        try:
            return await self._db.promotions.find_one(
                {"tenant_id": tenant_id, "promo_code": code, "is_active": True},
                {"_id": 0},
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Could not look up promo code for tenant {tenant_id}") from exc

    async def fetch_customer_usage_count(
        self, promotion_id: str, customer_identifier: str, tenant_id: str,
    ) -> int:
        try:
            doc = await self._db.customer_promotion_usage.find_one(
                {
                    "promotion_id":        promotion_id,
                    "customer_identifier": customer_identifier,
                    "tenant_id":           tenant_id,
                },
                {"_id": 0, "usage_count": 1},
            )
        except PyMongoError as exc:
            raise PersistenceError("Could not read customer promotion usage") from exc
        return int(doc.get("usage_count", 0)) if doc else 0

    async def record_usage(
        self,
        promotion_id: str,
        order_id: str,
        discount_amount: Decimal,
        original_amount: Decimal,
        final_amount: Decimal,
        affected_items: List[dict],
        customer_identifier: Optional[str] = None,
        promo_code: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        try:
            promotion = await self._increment_global(promotion_id, now)
            customer_counted = None
            try:
                if customer_identifier:
                    await self._increment_customer(promotion, customer_identifier, now)
                    customer_counted = customer_identifier

                await self._db.promotion_usage.insert_one({
                    "usage_id":            _usage_id(),
                    "promotion_id":        promotion_id,
                    "tenant_id":           promotion.get("tenant_id"),
                    "order_id":            order_id,
                    "customer_identifier": customer_identifier,
                    "discount_amount":     float(discount_amount),
                    "original_amount":     float(original_amount),
                    "final_amount":        float(final_amount),
                    "promo_code":          promo_code,
                    "affected_items":      affected_items,
                    "applied_at":          now,
                })
            except PyMongoError:
                # Pas de compteur sans ligne d'audit
                await self._rollback_counters(promotion, customer_counted)
                raise
        except PyMongoError as exc:
            raise PersistenceError(f"Could not record usage of promotion {promotion_id}") from exc

    async def release_usage(
        self, promotion_id: str, order_id: str, customer_identifier: Optional[str] = None,
    ) -> None:
        """Annule un record_usage déjà passé : supprime l'audit et décrémente les compteurs."""
        try:
            row = await self._db.promotion_usage.find_one_and_delete(
                {"promotion_id": promotion_id, "order_id": order_id},
                projection={"_id": 0, "tenant_id": 1},
                sort=[("applied_at", -1)],
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Could not release usage of promotion {promotion_id}") from exc
        if row is None:
            logger.warning("Aucun usage à annuler : promo=%s commande=%s", promotion_id, order_id)
            return
        await self._rollback_counters(
            {"promotion_id": promotion_id, "tenant_id": row.get("tenant_id")}, customer_identifier,
        )

    # ── Statistiques ──────────────────────────────────────────────────────────

    async def aggregate_usage(self, tenant_id: str, start: datetime, end: datetime) -> List[dict]:
        pipeline = [
            {"$match": {"tenant_id": tenant_id, "applied_at": {"$gte": start, "$lte": end}}},
            {"$group": {
                "_id":                   "$promotion_id",
                "total_uses":            {"$sum": 1},
                "total_discount_given":  {"$sum": "$discount_amount"},
                "total_original_amount": {"$sum": "$original_amount"},
                "avg_discount_per_use":  {"$avg": "$discount_amount"},
            }},
            {"$lookup": {
                "from":         "promotions",
                "localField":   "_id",
                "foreignField": "promotion_id",
                "as":           "promotion",
            }},
            {"$project": {
                "_id":                   0,
                "promotion_id":          "$_id",
                "name":                  {"$arrayElemAt": ["$promotion.name", 0]},
                "kind":                  {"$arrayElemAt": ["$promotion.kind", 0]},
                "total_uses":            1,
                "total_discount_given":  1,
                "total_original_amount": 1,
                "avg_discount_per_use":  1,
            }},
            {"$sort": {"total_uses": -1, "promotion_id": 1}},
        ]
        try:
            return await self._db.promotion_usage.aggregate(pipeline).to_list(length=None)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not aggregate promotion usage for tenant {tenant_id}") from exc

    # ── Compteurs ─────────────────────────────────────────────────────────────

    async def _increment_global(self, promotion_id: str, now: datetime) -> dict:
        query: dict = {"promotion_id": promotion_id}
        if self._strict:
            # check-and-increment en une seule opération atomique
            query["$or"] = [
                {"usage_limit_global": None},
                {"$expr": {"$lt": ["$usage_count", "$usage_limit_global"]}},
            ]
        promotion = await self._db.promotions.find_one_and_update(
            query,
            {"$inc": {"usage_count": 1}, "$set": {"updated_at": now}},
            projection={"_id": 0, "promotion_id": 1, "tenant_id": 1, "usage_limit_per_customer": 1},
            return_document=ReturnDocument.AFTER,
        )
        if promotion is None:
            raise UsageLimitExceeded(promotion_id, "Promotion usage limit reached")
        return promotion

    async def _increment_customer(self, promotion: dict, customer_identifier: str, now: datetime) -> None:
        promotion_id = promotion["promotion_id"]
        key = {
            "customer_identifier": customer_identifier,
            "promotion_id":        promotion_id,
            "tenant_id":           promotion.get("tenant_id"),
        }
        limit = promotion.get("usage_limit_per_customer")
        update = {"$inc": {"usage_count": 1}, "$set": {"last_used": now}}

        if not (self._strict and limit):
            await self._db.customer_promotion_usage.update_one(key, update, upsert=True)
            return

        try:
            # Si le compteur a déjà atteint la limite, le filtre ne matche pas et
            # l'upsert se heurte à l'index unique → DuplicateKeyError.
            await self._db.customer_promotion_usage.update_one(
                {**key, "usage_count": {"$lt": limit}}, update, upsert=True,
            )
        except DuplicateKeyError:
            await self._rollback_counters(promotion, None)
            logger.info(
                "Limite client atteinte : promo=%s client=%s",
                promotion_id, mask_identifier(customer_identifier),
            )
            raise UsageLimitExceeded(promotion_id, "Customer usage limit reached")

    async def _rollback_counters(self, promotion: dict, customer_identifier: Optional[str]) -> None:
        promotion_id = promotion["promotion_id"]
        try:
            await self._db.promotions.update_one(
                {"promotion_id": promotion_id}, {"$inc": {"usage_count": -1}},
            )
            if customer_identifier:
                await self._db.customer_promotion_usage.update_one(
                    {
                        "customer_identifier": customer_identifier,
                        "promotion_id":        promotion_id,
                        "tenant_id":           promotion.get("tenant_id"),
                    },
                    {"$inc": {"usage_count": -1}},
                )
        except PyMongoError as exc:
            logger.error("Compteurs non restaurés pour la promo %s : %s", promotion_id, exc)
