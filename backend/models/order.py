from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, model_validator

from models.promotion import Money


class OrderLineItem(BaseModel):
    menu_item_id: str
    category_id:  Optional[str] = None
    quantity:     int   = Field(gt=0)
    unit_price:   Money = Field(ge=0)
    name:         Optional[str] = None

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class Customer(BaseModel):
    identifier: str                     # téléphone E.164 ou id client
    email:      Optional[str] = None


class OrderContext(BaseModel):
    tenant_id:          str
    order_items:        List[OrderLineItem]
    customer:           Optional[Customer] = None
    subtotal:           Optional[Money] = None       # par défaut Σ total_price
    applied_promo_codes: List[str] = []
    evaluation_instant: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _default_subtotal(self):
        if self.subtotal is None:
            self.subtotal = sum((item.total_price for item in self.order_items), Decimal("0"))
        return self

    @property
    def customer_identifier(self) -> Optional[str]:
        return self.customer.identifier if self.customer else None


# ── Résultats ─────────────────────────────────────────────────────────────────

class AppliedItem(BaseModel):
    menu_item_id:     str
    original_price:   Decimal
    discounted_price: Decimal
    quantity:         int


class PromotionApplication(BaseModel):
    promotion_id:    str
    promotion_name:  str
    kind:            str
    discount_amount: Decimal
    applied_items:   List[AppliedItem] = []
    promo_code:      Optional[str] = None

    @property
    def original_amount(self) -> Decimal:
        return sum((i.original_price * i.quantity for i in self.applied_items), Decimal("0"))

    @property
    def final_amount(self) -> Decimal:
        return sum((i.discounted_price * i.quantity for i in self.applied_items), Decimal("0"))


class EngineResult(BaseModel):
    subtotal:              Decimal = Decimal("0")
    applicable_promotions: List[PromotionApplication] = []
    total_discount:        Decimal = Decimal("0")
    final_amount:          Decimal = Decimal("0")
    warnings:              List[str] = []


# ── Corps des requêtes HTTP ───────────────────────────────────────────────────

class CalculateRequest(BaseModel):
    order_items:         List[OrderLineItem]
    customer:            Optional[Customer] = None
    applied_promo_codes: List[str] = []
    evaluation_instant:  Optional[datetime] = None


class ApplyCodeRequest(CalculateRequest):
    promo_code: str


class PreviewRequest(BaseModel):
    tenant_id:           str
    order_items:         List[OrderLineItem]
    promo_codes:         List[str] = []
    customer_identifier: Optional[str] = None
    evaluation_instant:  Optional[datetime] = None
