"""
Éligibilité : conditions qu'une promotion du catalogue doit encore remplir
pour la commande en cours.

Ordre des contrôles : créneau horaire, jour, seuils panier, quotas, code,
articles requis. Un échec exclut la promo en silence ; check() renvoie la
raison pour les codes saisis explicitement.
"""
import logging
from datetime import datetime, time
from typing import List, NamedTuple, Optional

from core.utils import mask_identifier, normalize_promo_code, to_business_time
from models.order import OrderContext
from models.promotion import Promotion, TimeWindow
from services.promotion_store import PromotionStore
from services.targeting import has_required_items

logger = logging.getLogger(__name__)


class EligibilityCheck(NamedTuple):
    eligible: bool
    reason:   Optional[str] = None


ELIGIBLE = EligibilityCheck(True)


def is_in_time_window(window: Optional[TimeWindow], instant: datetime) -> bool:
    """Créneau de nuit (22:00–02:00) : valide si now ≥ début OU now ≤ fin."""
    if window is None:
        return True
    now: time = to_business_time(instant).time().replace(second=0, microsecond=0)
    if window.is_overnight:
        return now >= window.start or now <= window.end
    return window.start <= now <= window.end


def is_allowed_day(days_of_week: Optional[List[int]], instant: datetime) -> bool:
    # isoweekday() : 1 = lundi … 7 = dimanche
    if not days_of_week:
        return True
    return to_business_time(instant).isoweekday() in days_of_week


class EligibilityFilter:
    def __init__(self, store: PromotionStore):
        self._store = store

    async def filter(self, promotions: List[Promotion], context: OrderContext) -> List[Promotion]:
        eligible = []
        for promotion in promotions:
            result = await self.check(promotion, context)
            if result.eligible:
                eligible.append(promotion)
            else:
                logger.debug("Promo %s exclue : %s", promotion.promotion_id, result.reason)
        return eligible

    async def check(
        self,
        promotion: Promotion,
        context: OrderContext,
        extra_codes: Optional[List[str]] = None,
    ) -> EligibilityCheck:
        instant = context.evaluation_instant

        # 1. Créneau horaire
        if not is_in_time_window(promotion.time_window, instant):
            return EligibilityCheck(False, "Promotion is not valid at this time of day")

        # 2. Jour de la semaine
        if not is_allowed_day(promotion.days_of_week, instant):
            return EligibilityCheck(False, "Promotion is not valid on this day")

        # 3. Seuils panier
        if context.subtotal < promotion.min_cart_value:
            return EligibilityCheck(False, f"Minimum order value is {promotion.min_cart_value}")
        line_count = len(context.order_items)
        if promotion.min_items is not None and line_count < promotion.min_items:
            return EligibilityCheck(False, f"At least {promotion.min_items} items required")
        if promotion.max_items is not None and line_count > promotion.max_items:
            return EligibilityCheck(False, f"At most {promotion.max_items} items allowed")

        # 4. Quotas (global puis par client)
        if promotion.usage_limit_global is not None and promotion.usage_count >= promotion.usage_limit_global:
            return EligibilityCheck(False, "Promotion usage limit reached")
        customer = context.customer_identifier
        if customer and promotion.usage_limit_per_customer is not None:
            used = await self._store.fetch_customer_usage_count(
                promotion.promotion_id, customer, context.tenant_id,
            )
            if used >= promotion.usage_limit_per_customer:
                logger.debug(
                    "Quota client atteint : promo=%s client=%s (%s/%s)",
                    promotion.promotion_id, mask_identifier(customer),
                    used, promotion.usage_limit_per_customer,
                )
                return EligibilityCheck(False, "Customer usage limit reached")

        # 5. Code requis
        if promotion.requires_code:
            supplied = {normalize_promo_code(c) for c in context.applied_promo_codes + (extra_codes or [])}
            if promotion.promo_code not in supplied:
                return EligibilityCheck(False, "Promo code required")

        # 6. Articles requis (combos)
        required_items = getattr(promotion, "required_items", None)
        if required_items and not has_required_items(required_items, context.order_items):
            return EligibilityCheck(False, "Required items are missing from the order")

        return ELIGIBLE
