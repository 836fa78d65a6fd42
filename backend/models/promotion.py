"""
Promotions : union taguée sur `kind`.

Chaque variante ne porte que les champs utiles à son calcul ; les documents
Mongo sont validés une seule fois, au chargement du catalogue.
"""
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter,
    field_validator, model_validator,
)

from core.utils import normalize_promo_code


def _coerce_decimal(value):
    # Decimal128 (bson) expose to_decimal() ; les float passent par str pour éviter 0.1000000000000000055
    if hasattr(value, "to_decimal"):
        return value.to_decimal()
    if isinstance(value, float):
        return Decimal(str(value))
    return value


Money = Annotated[Decimal, BeforeValidator(_coerce_decimal)]
Percent = Annotated[Decimal, BeforeValidator(_coerce_decimal), Field(ge=0, le=100)]


# ── Ciblage ───────────────────────────────────────────────────────────────────

class AllTarget(BaseModel):
    type: Literal["ALL"] = "ALL"


class CategoryTarget(BaseModel):
    type:        Literal["CATEGORY"] = "CATEGORY"
    category_id: str


class ProductsTarget(BaseModel):
    type:     Literal["PRODUCTS"] = "PRODUCTS"
    item_ids: List[str] = []


TargetSpec = Annotated[
    Union[AllTarget, CategoryTarget, ProductsTarget],
    Field(discriminator="type"),
]


class TimeWindow(BaseModel):
    start: time     # "22:00"
    end:   time     # "02:00" → créneau de nuit si end < start

    @property
    def is_overnight(self) -> bool:
        return self.start > self.end


class RequiredItem(BaseModel):
    """Article (ou catégorie) obligatoire pour un combo."""
    menu_item_id:      Optional[str] = None
    category_id:       Optional[str] = None
    required_quantity: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _needs_a_reference(self):
        if not self.menu_item_id and not self.category_id:
            raise ValueError("required item needs menu_item_id or category_id")
        return self


# ── Champs communs ────────────────────────────────────────────────────────────

class PromotionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")   # _id Mongo, champs d'admin...

    promotion_id: str = Field(default_factory=lambda: f"promo_{uuid4().hex[:12]}")
    tenant_id:    str
    name:         str
    description:  str = ""
    # Conditions panier
    min_cart_value: Money = Decimal("0")
    min_items:      Optional[int] = Field(default=None, ge=0)
    max_items:      Optional[int] = Field(default=None, ge=0)
    # Conditions temporelles
    time_window:    Optional[TimeWindow] = None
    days_of_week:   Optional[List[Annotated[int, Field(ge=1, le=7)]]] = None   # 1=lundi … 7=dimanche
    active_from:    Optional[datetime] = None
    active_until:   Optional[datetime] = None
    # Quotas
    usage_limit_global:       Optional[int] = Field(default=None, ge=0)   # None = illimité
    usage_count:              int = 0
    usage_limit_per_customer: Optional[int] = Field(default=None, ge=0)
    # Code
    requires_code: bool = False
    promo_code:    Optional[str] = None
    # Résolution des conflits
    priority:   int  = 0          # plus grand = appliqué en premier
    combinable: bool = False
    auto_apply: bool = True
    is_active:  bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("promo_code", mode="before")
    @classmethod
    def _normalize_code(cls, value):
        return normalize_promo_code(value)

    @field_validator("active_from", mode="before")
    @classmethod
    def _start_of_day(cls, value):
        # Une date seule couvre la journée entière
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.min)
        if isinstance(value, str) and len(value) == 10:
            return datetime.combine(date.fromisoformat(value), time.min)
        return value

    @field_validator("active_until", mode="before")
    @classmethod
    def _end_of_day(cls, value):
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.max)
        if isinstance(value, str) and len(value) == 10:
            return datetime.combine(date.fromisoformat(value), time.max)
        return value

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, value: datetime) -> datetime:
        # sert de départage stable : toujours comparable
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.requires_code and not self.promo_code:
            raise ValueError("requires_code is set but promo_code is empty")
        if self.min_items is not None and self.max_items is not None and self.min_items > self.max_items:
            raise ValueError("min_items is greater than max_items")
        return self


# ── Variantes ─────────────────────────────────────────────────────────────────

class PercentagePromotion(PromotionBase):
    kind:                Literal["PERCENTAGE_OFF", "HAPPY_HOUR"]
    discount_value:      Percent
    max_discount_amount: Optional[Money] = None     # plafond sur le total de la promo
    target:              TargetSpec = Field(default_factory=AllTarget)


class FixedOffPromotion(PromotionBase):
    kind:           Literal["FIXED_OFF"]
    discount_value: Money = Field(ge=0)             # montant retiré de chaque ligne ciblée
    target:         TargetSpec = Field(default_factory=AllTarget)


class BogoPromotion(PromotionBase):
    kind:         Literal["BOGO"]
    buy_quantity: int = Field(default=1, ge=1)
    get_quantity: int = Field(default=1, ge=1)
    buy_target:   TargetSpec = Field(default_factory=AllTarget)
    get_target:   TargetSpec = Field(default_factory=AllTarget)


class FixedPricePromotion(PromotionBase):
    kind:        Literal["FIXED_PRICE"]
    fixed_price: Money = Field(ge=0)


class _CartDiscountFields(PromotionBase):
    discount_type:       Literal["PERCENTAGE", "FIXED_AMOUNT"] = "PERCENTAGE"
    discount_value:      Money = Field(default=Decimal("0"), ge=0)
    max_discount_amount: Optional[Money] = None

    @model_validator(mode="after")
    def _percentage_bound(self):
        if self.discount_type == "PERCENTAGE" and self.discount_value > 100:
            raise ValueError("percentage discount_value must be <= 100")
        return self


class CartDiscountPromotion(_CartDiscountFields):
    kind: Literal["CART_DISCOUNT"]


class ComboDealPromotion(_CartDiscountFields):
    kind:           Literal["COMBO_DEAL"]
    required_items: List[RequiredItem] = Field(min_length=1)


class _ItemDiscountFields(PromotionBase):
    discount_type:       Literal["PERCENTAGE", "FIXED_AMOUNT", "FIXED_PRICE"] = "PERCENTAGE"
    discount_value:      Money = Field(default=Decimal("0"), ge=0)
    target:              TargetSpec = Field(default_factory=AllTarget)
    max_quantity:        Optional[int] = Field(default=None, ge=1)   # unités remisées max par ligne
    item_price:          Optional[Money] = None                      # si discount_type = FIXED_PRICE
    max_discount_amount: Optional[Money] = None

    @model_validator(mode="after")
    def _percentage_bound(self):
        if self.discount_type == "PERCENTAGE" and self.discount_value > 100:
            raise ValueError("percentage discount_value must be <= 100")
        return self

    @model_validator(mode="after")
    def _fixed_price_needs_a_price(self):
        if self.discount_type == "FIXED_PRICE" and self._target_price() is None:
            raise ValueError("FIXED_PRICE discount needs a target price")
        return self

    def _target_price(self) -> Optional[Decimal]:
        return self.item_price


class ItemDiscountPromotion(_ItemDiscountFields):
    kind: Literal["ITEM_DISCOUNT"]


class TimeBasedPromotion(_ItemDiscountFields):
    kind:        Literal["TIME_BASED"]
    fixed_price: Optional[Money] = None     # brunch à prix fixe : discount_type = FIXED_PRICE, cible ALL

    def _target_price(self) -> Optional[Decimal]:
        # cible ALL : prix du panier entier, sinon prix unitaire par article
        return self.fixed_price if self.target.type == "ALL" else self.item_price


class CouponPromotion(_ItemDiscountFields):
    kind:          Literal["COUPON"]
    requires_code: bool = True


Promotion = Annotated[
    Union[
        PercentagePromotion,
        FixedOffPromotion,
        BogoPromotion,
        FixedPricePromotion,
        CartDiscountPromotion,
        ComboDealPromotion,
        ItemDiscountPromotion,
        TimeBasedPromotion,
        CouponPromotion,
    ],
    Field(discriminator="kind"),
]

PromotionAdapter = TypeAdapter(Promotion)


def parse_promotion(document: dict) -> Promotion:
    """Valide un document brut ; lève pydantic.ValidationError si invalide."""
    return PromotionAdapter.validate_python(document)
