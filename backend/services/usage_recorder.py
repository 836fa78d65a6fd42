"""
Enregistrement des promotions appliquées à une commande validée :
ligne d'audit + compteurs global et par client.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from core.exceptions import PromotionError
from core.utils import mask_identifier, to_money
from models.order import AppliedItem, EngineResult, PromotionApplication
from services.promotion_store import PromotionStore

logger = logging.getLogger(__name__)


def _affected_items(items: List[AppliedItem]) -> List[dict]:
    # Mongo ne stocke pas Decimal nativement
    return [
        {
            "menu_item_id":     item.menu_item_id,
            "original_price":   float(item.original_price),
            "discounted_price": float(item.discounted_price),
            "quantity":         item.quantity,
        }
        for item in items
    ]


class UsageRecorder:
    def __init__(self, store: PromotionStore):
        self._store = store

    async def record(
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
        await self._store.record_usage(
            promotion_id=promotion_id,
            order_id=order_id,
            discount_amount=to_money(discount_amount),
            original_amount=to_money(original_amount),
            final_amount=to_money(final_amount),
            affected_items=affected_items,
            customer_identifier=customer_identifier,
            promo_code=promo_code,
        )
        logger.info(
            "Usage enregistré : promo=%s commande=%s remise=%s client=%s",
            promotion_id, order_id, to_money(discount_amount),
            mask_identifier(customer_identifier) or "-",
        )

    async def record_application(
        self,
        order_id: str,
        application: PromotionApplication,
        customer_identifier: Optional[str] = None,
    ) -> None:
        original = application.original_amount
        await self.record(
            promotion_id=application.promotion_id,
            order_id=order_id,
            discount_amount=application.discount_amount,
            original_amount=original,
            final_amount=max(Decimal("0"), original - application.discount_amount),
            affected_items=_affected_items(application.applied_items),
            customer_identifier=customer_identifier,
            promo_code=application.promo_code,
        )

    async def record_result(
        self,
        order_id: str,
        result: EngineResult,
        customer_identifier: Optional[str] = None,
    ) -> int:
        """
        Enregistre chaque promotion du résultat, dans l'ordre. Retourne le nombre enregistré.
        Tout ou rien : si une promotion échoue (limite atteinte, Mongo indisponible),
        les usages déjà enregistrés pour cette commande sont annulés avant de relever l'erreur.
        """
        recorded: List[PromotionApplication] = []
        try:
            for application in result.applicable_promotions:
                await self.record_application(order_id, application, customer_identifier)
                recorded.append(application)
        except PromotionError as exc:
            if recorded:
                logger.warning(
                    "Enregistrement interrompu (%s) : annulation de %d usage(s) pour la commande %s",
                    exc, len(recorded), order_id,
                )
            for application in reversed(recorded):
                await self._store.release_usage(application.promotion_id, order_id, customer_identifier)
            raise
        return len(recorded)
