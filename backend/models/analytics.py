from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class PromotionUsageStats(BaseModel):
    promotion_id:          str
    name:                  Optional[str] = None
    kind:                  Optional[str] = None
    total_uses:            int = 0
    total_discount_given:  Decimal = Decimal("0")
    total_original_amount: Decimal = Decimal("0")
    avg_discount_per_use:  Decimal = Decimal("0")


class UsagePeriod(BaseModel):
    start: datetime
    end:   datetime


class UsageReport(BaseModel):
    analytics: List[PromotionUsageStats] = []
    period:    UsagePeriod
