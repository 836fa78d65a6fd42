from models.promotion import CategoryTarget, ProductsTarget, RequiredItem
from services.targeting import (
    has_required_items, matches_target, resolve_bogo_targets, resolve_targets,
)
from helpers import line, make_promotion


def _order():
    return [
        line("burger", 12, category_id="mains"),
        line("cola", 3, quantity=2, category_id="drinks"),
        line("water", 2, category_id="drinks"),
        line("special", 9),
    ]


def test_all_target_selects_every_line():
    promo = make_promotion("PERCENTAGE_OFF", discount_value=10)
    assert [i.menu_item_id for i in resolve_targets(promo, _order())] == ["burger", "cola", "water", "special"]


def test_category_target_ignores_uncategorised_lines():
    promo = make_promotion(
        "PERCENTAGE_OFF", discount_value=10, target={"type": "CATEGORY", "category_id": "drinks"},
    )
    assert [i.menu_item_id for i in resolve_targets(promo, _order())] == ["cola", "water"]


def test_products_target_matches_menu_item_ids():
    promo = make_promotion("FIXED_OFF", discount_value=1, target={"type": "PRODUCTS", "item_ids": ["burger", "special"]})
    assert [i.menu_item_id for i in resolve_targets(promo, _order())] == ["burger", "special"]


def test_promotion_without_target_covers_whole_order():
    promo = make_promotion("FIXED_PRICE", fixed_price=20)
    assert len(resolve_targets(promo, _order())) == 4


def test_bogo_sides_are_resolved_independently():
    promo = make_promotion(
        "BOGO",
        buy_target={"type": "CATEGORY", "category_id": "mains"},
        get_target={"type": "CATEGORY", "category_id": "drinks"},
    )
    targets = resolve_bogo_targets(promo, _order())
    assert [i.menu_item_id for i in targets.buy_items] == ["burger"]
    assert [i.menu_item_id for i in targets.get_items] == ["cola", "water"]


def test_matches_target_on_single_line():
    item = line("cola", 3, category_id="drinks")
    assert matches_target(item, CategoryTarget(category_id="drinks"))
    assert not matches_target(item, ProductsTarget(item_ids=["water"]))


def test_required_items_sum_category_quantities():
    required = [RequiredItem(category_id="drinks", required_quantity=3)]
    assert has_required_items(required, _order())
    required = [RequiredItem(category_id="drinks", required_quantity=4)]
    assert not has_required_items(required, _order())


def test_required_items_by_menu_item():
    required = [
        RequiredItem(menu_item_id="burger"),
        RequiredItem(menu_item_id="fries"),
    ]
    assert not has_required_items(required, _order())
    assert has_required_items(required[:1], _order())
