"""
Router promotions : calcul des remises d'une commande, codes promo, aperçu,
vitrine publique et statistiques d'usage.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from config import settings
from core.dependencies import require_checkout, require_manager, require_staff
from core.exceptions import (
    ConditionsNotMet, InvalidPromoCode, PersistenceError, ValidationError,
    bad_request_exception, not_found_exception, service_unavailable_exception,
    unprocessable_exception,
)
from core.limiter import limiter
from database import db
from models.analytics import UsageReport
from models.order import (
    ApplyCodeRequest, CalculateRequest, EngineResult, OrderContext, PreviewRequest,
)
from services.promotion_engine import PromotionEngine
from services.promotion_store import MongoPromotionStore

router = APIRouter()

# Champs internes jamais exposés sur la vitrine publique
PUBLIC_EXCLUDE = {
    "tenant_id", "usage_count", "usage_limit_global", "usage_limit_per_customer",
    "promo_code", "requires_code", "auto_apply", "is_active", "created_at",
}


def get_promotion_engine() -> PromotionEngine:
    return PromotionEngine(MongoPromotionStore(db))


async def _run(call):
    """Traduit les erreurs du moteur en réponses HTTP."""
    try:
        return await call
    except ValidationError as exc:
        raise unprocessable_exception(str(exc))
    except InvalidPromoCode:
        raise not_found_exception("Promo code")
    except ConditionsNotMet as exc:
        raise bad_request_exception(exc.reason)
    except PersistenceError:
        raise service_unavailable_exception()


def _context(tenant_id: str, body: CalculateRequest) -> OrderContext:
    return OrderContext(
        tenant_id=tenant_id,
        order_items=body.order_items,
        customer=body.customer,
        applied_promo_codes=body.applied_promo_codes,
        evaluation_instant=body.evaluation_instant or datetime.now(timezone.utc),
    )


# ── Public ────────────────────────────────────────────────────────────────────
@router.post("/preview", response_model=EngineResult, summary="Aperçu des remises (public)")
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def preview(
    request: Request,
    body: PreviewRequest,
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    return await _run(engine.preview_promotions(
        items=body.order_items,
        tenant_id=body.tenant_id,
        codes=body.promo_codes,
        customer_identifier=body.customer_identifier,
        evaluation_instant=body.evaluation_instant,
    ))


@router.get("/public/active", summary="Promotions en cours d'un restaurant (public)")
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def list_public_promotions(
    request: Request,
    tenant_id: str = Query(..., min_length=1),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    promotions = await _run(engine.catalog.list_available(tenant_id, datetime.now(timezone.utc)))
    return {"promotions": [p.model_dump(mode="json", exclude=PUBLIC_EXCLUDE) for p in promotions]}


# ── Staff ─────────────────────────────────────────────────────────────────────
@router.get("/active", summary="Promotions en cours du tenant")
async def list_active_promotions(
    include_code_required: bool = False,
    current_user: dict = Depends(require_staff),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    promotions = await _run(engine.catalog.list_available(
        current_user["tenant_id"], datetime.now(timezone.utc), include_code_required,
    ))
    return {"promotions": [p.model_dump(mode="json") for p in promotions]}


@router.post("/calculate", response_model=EngineResult, summary="Remises automatiques d'une commande")
async def calculate(
    body: CalculateRequest,
    current_user: dict = Depends(require_staff),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    return await _run(engine.calculate_promotions(_context(current_user["tenant_id"], body)))


@router.post("/apply-code", response_model=EngineResult, summary="Appliquer un code promo")
async def apply_code(
    body: ApplyCodeRequest,
    current_user: dict = Depends(require_staff),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    context = _context(current_user["tenant_id"], body)
    return await _run(engine.apply_promo_code(body.promo_code, context))


@router.post(
    "/orders/{order_id}/commit",
    response_model=EngineResult,
    summary="Calcul définitif + enregistrement des usages (caisse)",
)
async def commit_order_promotions(
    order_id: str,
    body: CalculateRequest,
    current_user: dict = Depends(require_checkout),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    context = _context(current_user["tenant_id"], body)
    return await _run(engine.commit_promotions(order_id, context))


# ── Manager ───────────────────────────────────────────────────────────────────
@router.get("/analytics", response_model=UsageReport, summary="Statistiques d'usage des promotions")
async def promotion_analytics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: dict = Depends(require_manager),
    engine: PromotionEngine = Depends(get_promotion_engine),
):
    return await _run(engine.analytics.usage_report(current_user["tenant_id"], start_date, end_date))
