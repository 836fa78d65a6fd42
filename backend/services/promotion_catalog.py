"""
Catalogue des promotions d'un tenant : chargement + validation à la frontière.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.utils import normalize_promo_code, to_business_time
from models.promotion import Promotion, parse_promotion
from services.promotion_store import PromotionStore

logger = logging.getLogger(__name__)


def is_within_active_range(promotion: Promotion, as_of: datetime) -> bool:
    """Borne absente = non bornée de ce côté."""
    now = to_business_time(as_of)
    if promotion.active_from and to_business_time(promotion.active_from) > now:
        return False
    if promotion.active_until and to_business_time(promotion.active_until) < now:
        return False
    return True


class PromotionCatalog:
    def __init__(self, store: PromotionStore):
        self._store = store

    def _parse(self, documents: List[dict]) -> List[Promotion]:
        promotions = []
        for doc in documents:
            try:
                promotions.append(parse_promotion(doc))
            except PydanticValidationError as exc:
                # Une règle mal configurée ne doit pas bloquer tout le catalogue
                logger.warning(
                    "Promotion ignorée (configuration invalide) : id=%s erreurs=%s",
                    doc.get("promotion_id"), exc.error_count(),
                )
        return promotions

    async def list_active(self, tenant_id: str, as_of: datetime) -> List[Promotion]:
        documents = await self._store.fetch_active_promotions(tenant_id, as_of)
        return [
            p for p in self._parse(documents)
            if p.is_active and is_within_active_range(p, as_of)
        ]

    async def list_available(
        self, tenant_id: str, as_of: datetime, include_code_required: bool = False,
    ) -> List[Promotion]:
        """Promotions à afficher côté client (sans celles à code, par défaut)."""
        promotions = await self.list_active(tenant_id, as_of)
        if not include_code_required:
            promotions = [p for p in promotions if not p.requires_code]
        return sorted(promotions, key=lambda p: (-p.priority, p.created_at))

    async def find_by_code(self, tenant_id: str, code: str, as_of: datetime) -> Optional[Promotion]:
        normalized = normalize_promo_code(code)
        if not normalized:
            return None
        document = await self._store.fetch_promotion_by_code(tenant_id, normalized)
        if document is None:
            return None
        promotions = self._parse([document])
        if not promotions:
            return None
        promotion = promotions[0]
        if not promotion.is_active or not is_within_active_range(promotion, as_of):
            return None
        return promotion
