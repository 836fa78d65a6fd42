"""
Statistiques d'usage des promotions d'un tenant (tableau de bord manager).
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from config import settings
from core.exceptions import ValidationError
from core.utils import to_money
from models.analytics import PromotionUsageStats, UsagePeriod, UsageReport
from services.promotion_catalog import PromotionCatalog
from services.promotion_store import PromotionStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _money(value) -> Decimal:
    # les montants d'audit sont stockés en float
    return to_money(value or 0)


class PromotionAnalytics:
    def __init__(self, store: PromotionStore):
        self._store = store
        self._catalog = PromotionCatalog(store)

    async def usage_report(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageReport:
        """
        Usages agrégés par promotion sur [start, end], du plus utilisé au moins utilisé.
        Par défaut : les ANALYTICS_DEFAULT_DAYS derniers jours. Les promotions en cours
        sans aucun usage sur la période apparaissent avec des compteurs à zéro.
        """
        end = _as_utc(end) if end else datetime.now(timezone.utc)
        start = _as_utc(start) if start else end - timedelta(days=settings.ANALYTICS_DEFAULT_DAYS)
        if start > end:
            raise ValidationError("start_date must be before end_date")

        rows = await self._store.aggregate_usage(tenant_id, start, end)
        stats = [
            PromotionUsageStats(
                promotion_id=row["promotion_id"],
                name=row.get("name"),
                kind=row.get("kind"),
                total_uses=row["total_uses"],
                total_discount_given=_money(row.get("total_discount_given")),
                total_original_amount=_money(row.get("total_original_amount")),
                avg_discount_per_use=_money(row.get("avg_discount_per_use")),
            )
            for row in rows
        ]

        seen = {s.promotion_id for s in stats}
        for promotion in await self._catalog.list_available(tenant_id, end, include_code_required=True):
            if promotion.promotion_id not in seen:
                stats.append(PromotionUsageStats(
                    promotion_id=promotion.promotion_id, name=promotion.name, kind=promotion.kind,
                ))

        logger.info("Statistiques promos : tenant=%s promotions=%d", tenant_id, len(stats))
        return UsageReport(analytics=stats, period=UsagePeriod(start=start, end=end))
