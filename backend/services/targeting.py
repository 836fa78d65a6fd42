"""
Ciblage : quelles lignes de la commande une promotion peut toucher.
"""
from typing import List, NamedTuple

from models.order import OrderLineItem
from models.promotion import BogoPromotion, Promotion


class BogoTargets(NamedTuple):
    buy_items: List[OrderLineItem]
    get_items: List[OrderLineItem]


def matches_target(item: OrderLineItem, target) -> bool:
    if target.type == "ALL":
        return True
    if target.type == "CATEGORY":
        return item.category_id is not None and item.category_id == target.category_id
    if target.type == "PRODUCTS":
        return item.menu_item_id in target.item_ids
    return False


def select(items: List[OrderLineItem], target) -> List[OrderLineItem]:
    return [item for item in items if matches_target(item, target)]


def resolve_targets(promotion: Promotion, items: List[OrderLineItem]) -> List[OrderLineItem]:
    """Promos sans ciblage (panier, prix fixe, combo) : toutes les lignes."""
    target = getattr(promotion, "target", None)
    if target is None:
        return list(items)
    return select(items, target)


def resolve_bogo_targets(promotion: BogoPromotion, items: List[OrderLineItem]) -> BogoTargets:
    # Les deux côtés sont résolus indépendamment : une même ligne peut être des deux
    return BogoTargets(
        buy_items=select(items, promotion.buy_target),
        get_items=select(items, promotion.get_target),
    )


def has_required_items(required_items, items: List[OrderLineItem]) -> bool:
    """
    Chaque article requis doit être présent en quantité suffisante ; pour une
    catégorie on additionne les quantités de toutes ses lignes.
    """
    for required in required_items:
        if required.menu_item_id:
            quantity = sum(i.quantity for i in items if i.menu_item_id == required.menu_item_id)
        else:
            quantity = sum(i.quantity for i in items if i.category_id == required.category_id)
        if quantity < required.required_quantity:
            return False
    return True
