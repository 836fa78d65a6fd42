"""
Calcul des remises, une fonction pure par type de promotion.

Chaque calculateur reçoit l'état courant des lignes (prix déjà remisés par
les promos précédentes) et le sous-total courant, et retourne le montant de
la remise + le détail par ligne. Aucune I/O, aucune mutation.

Formules :
  PERCENTAGE_OFF / HAPPY_HOUR : Σ prix × qté × v/100, plafond sur le TOTAL de la promo
  FIXED_OFF                   : par ligne min(v, prix × qté)
  BOGO                        : unités offertes sur les lignes "get", voir _free_groups()
  FIXED_PRICE                 : max(0, sous_total − prix_fixe), réparti sur les lignes
  CART_DISCOUNT / COMBO_DEAL  : % (plafonné) ou montant sur le sous-total, réparti
  ITEM_DISCOUNT               : %, montant par unité ou prix unitaire imposé, par ligne
  TIME_BASED / COUPON         : panier si cible ALL, sinon comme ITEM_DISCOUNT
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from core.utils import to_money
from models.order import AppliedItem, OrderLineItem
from models.promotion import (
    BogoPromotion, ComboDealPromotion, FixedOffPromotion, FixedPricePromotion,
    PercentagePromotion, Promotion, TimeBasedPromotion,
)
from services.targeting import has_required_items, resolve_bogo_targets, resolve_targets

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class LineDiscount:
    item:   OrderLineItem     # ligne de l'état courant (non modifiée ici)
    amount: Decimal           # remise totale sur la ligne, au centime
    units:  int               # unités concernées


@dataclass
class Calculation:
    discount_amount: Decimal = ZERO
    lines:           List[LineDiscount] = field(default_factory=list)

    def applied_items(self) -> List[AppliedItem]:
        applied = []
        for line in self.lines:
            original = line.item.unit_price
            applied.append(AppliedItem(
                menu_item_id=line.item.menu_item_id,
                original_price=to_money(original),
                discounted_price=to_money(max(ZERO, original - line.amount / line.units)),
                quantity=line.units,
            ))
        return applied


def _build(lines: List[LineDiscount]) -> Calculation:
    kept = [line for line in lines if line.amount > 0]
    return Calculation(
        discount_amount=sum((line.amount for line in kept), ZERO),
        lines=kept,
    )


def prorate(total: Decimal, weights: List[Decimal]) -> List[Decimal]:
    """
    Répartit `total` (au centime) proportionnellement aux poids.
    Aucune part ne dépasse son poids, donc Σ résultat == min(total, Σ poids) ;
    le reliquat d'arrondi est absorbé en partant de la dernière ligne non nulle.
    """
    capacities = [to_money(w) if w > 0 else ZERO for w in weights]
    total = min(to_money(total), sum(capacities, ZERO))
    weight_sum = sum(weights, ZERO)
    if total <= 0 or weight_sum <= 0:
        return [ZERO for _ in weights]

    shares = [to_money(total * w / weight_sum) if w > 0 else ZERO for w in weights]
    remainder = total - sum(shares, ZERO)
    for index in range(len(shares) - 1, -1, -1):
        if not remainder:
            break
        if weights[index] <= 0:
            continue
        adjusted = max(ZERO, min(capacities[index], shares[index] + remainder))
        remainder -= adjusted - shares[index]
        shares[index] = adjusted
    return shares


def _apply_cap(lines: List[LineDiscount], cap: Optional[Decimal]) -> List[LineDiscount]:
    """Plafond appliqué au total de la promo, réduit proportionnellement par ligne."""
    if cap is None:
        return lines
    total = sum((line.amount for line in lines), ZERO)
    if total <= cap:
        return lines
    shares = prorate(cap, [line.amount for line in lines])
    return [LineDiscount(line.item, share, line.units) for line, share in zip(lines, shares)]


def _spread_over_cart(amount: Decimal, items: List[OrderLineItem]) -> Calculation:
    cart_total = sum((item.total_price for item in items), ZERO)
    amount = min(to_money(amount), to_money(cart_total))
    shares = prorate(amount, [item.total_price for item in items])
    return _build([LineDiscount(item, share, item.quantity) for item, share in zip(items, shares)])


# ── Calculateurs ──────────────────────────────────────────────────────────────

def calculate_percentage_off(promotion: PercentagePromotion, items, subtotal) -> Calculation:
    rate = promotion.discount_value / HUNDRED
    lines = [
        LineDiscount(item, to_money(item.unit_price * item.quantity * rate), item.quantity)
        for item in resolve_targets(promotion, items)
    ]
    return _build(_apply_cap(lines, promotion.max_discount_amount))


def calculate_fixed_off(promotion: FixedOffPromotion, items, subtotal) -> Calculation:
    lines = [
        LineDiscount(item, to_money(min(promotion.discount_value, item.total_price)), item.quantity)
        for item in resolve_targets(promotion, items)
    ]
    return _build(lines)


def _free_groups(buy_only: int, shared: int, get_only: int, buy_qty: int, get_qty: int) -> int:
    """
    Nombre max de groupes "buy X get Y" réalisables.

    Les unités offertes sont prises d'abord sur les lignes seulement "get",
    puis sur les lignes à la fois "buy" et "get" ; une unité offerte ne compte
    plus comme achetée. Revient à floor(Q/buy) × get quand les deux côtés sont
    disjoints et à floor(Q/(buy+get)) × get quand ce sont les mêmes lignes.

    Pour k groupes : k×get ≤ get_only + shared, et
      - si k×get ≤ get_only : k×buy ≤ buy_only + shared
      - sinon : k×(buy+get) ≤ buy_only + shared + get_only
    Les deux contraintes sont monotones en k, d'où la forme close.
    """
    within_get_only = get_only // get_qty
    using_shared = min(
        (get_only + shared) // get_qty,
        (buy_only + shared + get_only) // (buy_qty + get_qty),
    )
    if using_shared > within_get_only:
        return using_shared
    return min(within_get_only, (buy_only + shared) // buy_qty)


def calculate_bogo(promotion: BogoPromotion, items, subtotal) -> Calculation:
    targets = resolve_bogo_targets(promotion, items)
    if not targets.buy_items or not targets.get_items:
        return Calculation()

    buy_ids = {id(item) for item in targets.buy_items}
    get_ids = {id(item) for item in targets.get_items}
    get_only_lines = [item for item in targets.get_items if id(item) not in buy_ids]
    shared_lines = [item for item in targets.get_items if id(item) in buy_ids]
    buy_only = sum(item.quantity for item in targets.buy_items if id(item) not in get_ids)

    groups = _free_groups(
        buy_only=buy_only,
        shared=sum(item.quantity for item in shared_lines),
        get_only=sum(item.quantity for item in get_only_lines),
        buy_qty=promotion.buy_quantity,
        get_qty=promotion.get_quantity,
    )
    remaining = groups * promotion.get_quantity

    lines = []
    for item in get_only_lines + shared_lines:
        if remaining <= 0:
            break
        freed = min(remaining, item.quantity)
        lines.append(LineDiscount(item, to_money(item.unit_price * freed), freed))
        remaining -= freed
    return _build(lines)


def calculate_fixed_price(promotion: FixedPricePromotion, items, subtotal) -> Calculation:
    return _spread_over_cart(max(ZERO, subtotal - promotion.fixed_price), items)


def calculate_cart_discount(promotion, items, subtotal) -> Calculation:
    if promotion.discount_type == "PERCENTAGE":
        amount = to_money(subtotal * promotion.discount_value / HUNDRED)
        if promotion.max_discount_amount is not None:
            amount = min(amount, promotion.max_discount_amount)
    else:
        amount = min(promotion.discount_value, subtotal)
    return _spread_over_cart(max(ZERO, amount), items)


def calculate_combo_deal(promotion: ComboDealPromotion, items, subtotal) -> Calculation:
    if not has_required_items(promotion.required_items, items):
        return Calculation()
    return calculate_cart_discount(promotion, items, subtotal)


def calculate_item_discount(promotion, items, subtotal) -> Calculation:
    lines = []
    for item in resolve_targets(promotion, items):
        units = min(item.quantity, promotion.max_quantity or item.quantity)
        if promotion.discount_type == "PERCENTAGE":
            amount = item.unit_price * units * promotion.discount_value / HUNDRED
        elif promotion.discount_type == "FIXED_AMOUNT":
            amount = min(promotion.discount_value * units, item.unit_price * units)
        else:
            amount = max(ZERO, item.unit_price - promotion.item_price) * units
        lines.append(LineDiscount(item, to_money(amount), units))
    return _build(_apply_cap(lines, promotion.max_discount_amount))


def _cart_or_items(promotion, items, subtotal) -> Calculation:
    if promotion.target.type == "ALL" and promotion.discount_type in ("PERCENTAGE", "FIXED_AMOUNT"):
        return calculate_cart_discount(promotion, items, subtotal)
    return calculate_item_discount(promotion, items, subtotal)


def calculate_time_based(promotion: TimeBasedPromotion, items, subtotal) -> Calculation:
    if promotion.discount_type == "FIXED_PRICE" and promotion.target.type == "ALL":
        return _spread_over_cart(max(ZERO, subtotal - promotion.fixed_price), items)
    return _cart_or_items(promotion, items, subtotal)


CALCULATORS: Dict[str, Callable[..., Calculation]] = {
    "PERCENTAGE_OFF": calculate_percentage_off,
    "HAPPY_HOUR":     calculate_percentage_off,
    "FIXED_OFF":      calculate_fixed_off,
    "BOGO":           calculate_bogo,
    "FIXED_PRICE":    calculate_fixed_price,
    "CART_DISCOUNT":  calculate_cart_discount,
    "COMBO_DEAL":     calculate_combo_deal,
    "ITEM_DISCOUNT":  calculate_item_discount,
    "TIME_BASED":     calculate_time_based,
    "COUPON":         _cart_or_items,
}


def calculate(promotion: Promotion, items: List[OrderLineItem], subtotal: Decimal) -> Calculation:
    try:
        calculator = CALCULATORS[promotion.kind]
    except KeyError:
        raise ValueError(f"Unsupported promotion kind: {promotion.kind}") from None
    return calculator(promotion, items, subtotal)
