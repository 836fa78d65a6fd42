"""
Moteur de promotions : point d'entrée unique du calcul des remises.

  catalogue → éligibilité → (par promo) ciblage → calcul → résolution
  → EngineResult → éventuellement enregistrement des usages

Résolution des conflits :
  - tri par priorité décroissante, puis created_at, puis promotion_id
  - une promo s'applique si rien n'est encore appliqué, ou si elle et toutes
    les promos déjà appliquées sont cumulables
  - une promo non cumulable de priorité strictement supérieure au maximum
    déjà appliqué remplace tout ; sinon elle est ignorée
  - chaque promo voit les prix déjà remisés par les précédentes
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from core.exceptions import ConditionsNotMet, InvalidPromoCode, ValidationError
from core.utils import mask_identifier, normalize_promo_code, to_money
from models.order import EngineResult, OrderContext, OrderLineItem, PromotionApplication
from models.promotion import Promotion
from services.discount_calculator import Calculation, calculate
from services.eligibility import EligibilityFilter
from services.promotion_analytics import PromotionAnalytics
from services.promotion_catalog import PromotionCatalog
from services.promotion_store import PromotionStore
from services.usage_recorder import UsageRecorder

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def resolution_order(promotion: Promotion):
    return (-promotion.priority, promotion.created_at, promotion.promotion_id)


@dataclass
class Resolution:
    applications: List[PromotionApplication] = field(default_factory=list)
    items:        List[OrderLineItem] = field(default_factory=list)   # prix après remises
    subtotal:     Decimal = ZERO                                       # sous-total restant
    warnings:     List[str] = field(default_factory=list)


class CombinationResolver:
    """Applique une liste de promotions éligibles sur une copie des lignes."""

    def resolve(self, promotions: List[Promotion], items: List[OrderLineItem], subtotal: Decimal) -> Resolution:
        state = self._fresh_state(items, subtotal)
        applied: List[Promotion] = []
        warnings: List[str] = []

        for promotion in sorted(promotions, key=resolution_order):
            if not applied:
                replace = False
            elif promotion.combinable and all(p.combinable for p in applied):
                replace = False
            elif not promotion.combinable and promotion.priority > max(p.priority for p in applied):
                replace = True
            else:
                logger.debug("Promo %s ignorée (non cumulable)", promotion.promotion_id)
                continue

            target = self._fresh_state(items, subtotal) if replace else state
            try:
                calculation = calculate(promotion, target.items, target.subtotal)
            except Exception as exc:
                logger.warning("Échec du calcul de la promo %s : %s", promotion.promotion_id, exc)
                warnings.append(f"Promotion {promotion.name} could not be applied")
                continue

            if calculation.discount_amount <= 0:
                continue

            if replace:
                logger.debug(
                    "Promo %s (priorité %s) remplace %d promo(s)",
                    promotion.promotion_id, promotion.priority, len(applied),
                )
                applied = []
                state = target
            self._apply(promotion, calculation, state)
            applied.append(promotion)

        state.warnings = warnings
        return state

    @staticmethod
    def _fresh_state(items: List[OrderLineItem], subtotal: Decimal) -> Resolution:
        # Les lignes de l'appelant ne sont jamais modifiées
        return Resolution(items=[item.model_copy() for item in items], subtotal=subtotal)

    @staticmethod
    def _apply(promotion: Promotion, calculation: Calculation, state: Resolution) -> None:
        amount = to_money(calculation.discount_amount)
        state.applications.append(PromotionApplication(
            promotion_id=promotion.promotion_id,
            promotion_name=promotion.name,
            kind=promotion.kind,
            discount_amount=amount,
            applied_items=calculation.applied_items(),
            promo_code=promotion.promo_code if promotion.requires_code else None,
        ))
        state.subtotal = max(ZERO, state.subtotal - amount)
        # La remise d'une ligne est étalée sur toutes ses unités
        for line in calculation.lines:
            line.item.unit_price = max(ZERO, line.item.unit_price - line.amount / line.item.quantity)


def build_result(subtotal: Decimal, applications: List[PromotionApplication], warnings: List[str]) -> EngineResult:
    subtotal = to_money(subtotal)
    total = to_money(sum((a.discount_amount for a in applications), ZERO))
    return EngineResult(
        subtotal=subtotal,
        applicable_promotions=applications,
        total_discount=total,
        final_amount=max(ZERO, subtotal - total),
        warnings=warnings,
    )


class PromotionEngine:
    def __init__(self, store: PromotionStore, recorder: Optional[UsageRecorder] = None):
        self.catalog = PromotionCatalog(store)
        self.eligibility = EligibilityFilter(store)
        self.resolver = CombinationResolver()
        self.recorder = recorder or UsageRecorder(store)
        self.analytics = PromotionAnalytics(store)

    # ── Passe automatique ─────────────────────────────────────────────────────

    async def calculate_promotions(self, context: OrderContext) -> EngineResult:
        self._validate_context(context)
        logger.info(
            "Calcul promotions : tenant=%s sous-total=%s lignes=%d client=%s",
            context.tenant_id, to_money(context.subtotal), len(context.order_items),
            mask_identifier(context.customer_identifier) or "-",
        )

        promotions = await self.catalog.list_active(context.tenant_id, context.evaluation_instant)
        # Une promo sans application automatique ne passe que si son code est fourni
        candidates = [p for p in promotions if p.auto_apply or p.requires_code]
        eligible = await self.eligibility.filter(candidates, context)

        resolution = self.resolver.resolve(eligible, context.order_items, context.subtotal)
        result = build_result(context.subtotal, resolution.applications, resolution.warnings)
        logger.info(
            "Promotions appliquées : tenant=%s promos=%s remise=%s",
            context.tenant_id,
            [a.promotion_id for a in result.applicable_promotions],
            result.total_discount,
        )
        return result

    # ── Codes promo ───────────────────────────────────────────────────────────

    async def apply_promo_code(self, code: str, context: OrderContext) -> EngineResult:
        resolution = await self._resolve_code(code, context)
        return build_result(context.subtotal, resolution.applications, resolution.warnings)

    async def _resolve_code(self, code: str, context: OrderContext) -> Resolution:
        self._validate_context(context)
        promotion = await self.catalog.find_by_code(context.tenant_id, code, context.evaluation_instant)
        if promotion is None:
            raise InvalidPromoCode(code)

        check = await self.eligibility.check(promotion, context, extra_codes=[code])
        if not check.eligible:
            raise ConditionsNotMet(promotion.promotion_id, check.reason)

        resolution = self.resolver.resolve([promotion], context.order_items, context.subtotal)
        if not resolution.applications:
            raise ConditionsNotMet(promotion.promotion_id, "Promotion does not apply to this order")
        logger.info(
            "Code %s appliqué : promo=%s remise=%s",
            promotion.promo_code, promotion.promotion_id, resolution.applications[0].discount_amount,
        )
        return resolution

    async def apply_promo_codes(self, codes: List[str], context: OrderContext) -> EngineResult:
        """
        Applique plusieurs codes l'un après l'autre : chacun voit le sous-total
        restant et les prix déjà remisés. Un code refusé devient un warning.
        """
        self._validate_context(context)
        applications: List[PromotionApplication] = []
        warnings: List[str] = []
        current = context.model_copy(update={
            "order_items": [item.model_copy() for item in context.order_items],
        })
        seen = set()

        for code in codes:
            normalized = normalize_promo_code(code)
            if normalized in seen:
                warnings.append(f"Promo code already applied: {code}")
                continue
            seen.add(normalized)
            try:
                resolution = await self._resolve_code(code, current)
            except (InvalidPromoCode, ConditionsNotMet) as exc:
                logger.warning("Code promo %s refusé : %s", code, exc)
                warnings.append(f"Invalid promo code: {code}")
                continue

            applications.extend(resolution.applications)
            warnings.extend(resolution.warnings)
            current = current.model_copy(update={
                "order_items": resolution.items,
                "subtotal": resolution.subtotal,
            })

        return build_result(context.subtotal, applications, warnings)

    # ── Aperçu / validation ───────────────────────────────────────────────────

    async def preview_promotions(
        self,
        items: List[OrderLineItem],
        tenant_id: str,
        codes: Optional[List[str]] = None,
        customer_identifier: Optional[str] = None,
        evaluation_instant: Optional[datetime] = None,
    ) -> EngineResult:
        """Même calcul que la passe automatique, sans jamais rien enregistrer."""
        context = OrderContext(
            tenant_id=tenant_id,
            order_items=items,
            customer={"identifier": customer_identifier} if customer_identifier else None,
            applied_promo_codes=codes or [],
            evaluation_instant=evaluation_instant or datetime.now(timezone.utc),
        )
        return await self.calculate_promotions(context)

    async def commit_promotions(self, order_id: str, context: OrderContext) -> EngineResult:
        """
        Calcul définitif d'une commande validée, puis enregistrement des usages.
        Codes fournis → appliqués un par un ; sinon passe automatique.
        """
        if context.applied_promo_codes:
            result = await self.apply_promo_codes(context.applied_promo_codes, context)
        else:
            result = await self.calculate_promotions(context)

        recorded = await self.recorder.record_result(order_id, result, context.customer_identifier)
        logger.info("Commande %s : %d promotion(s) enregistrée(s)", order_id, recorded)
        return result

    @staticmethod
    def _validate_context(context: OrderContext) -> None:
        if not context.tenant_id:
            raise ValidationError("tenant_id is required")
        if not context.order_items:
            raise ValidationError("Order has no items")
