import asyncio
import os
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient

from models.promotion import parse_promotion

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "pos_promotions")
TENANT_ID = os.environ.get("TENANT_ID", "tenant_demo")

# Jeu de promos de démo : happy hour, brunch, BOGO boissons, remise panier, coupon de bienvenue
SAMPLE_PROMOTIONS = [
    {
        "promotion_id":   "promo_happyhour_001",
        "name":           "Happy Hour - 30% off drinks",
        "description":    "30% off all beverages from 4-6 PM on weekdays",
        "kind":           "HAPPY_HOUR",
        "discount_value": 30.0,
        "target":         {"type": "CATEGORY", "category_id": "category_beverages"},
        "time_window":    {"start": "16:00", "end": "18:00"},
        "days_of_week":   [1, 2, 3, 4, 5],
        "priority":       10,
        "combinable":     True,
    },
    {
        "promotion_id":  "promo_brunch_001",
        "name":          "Weekend Brunch Special",
        "description":   "Fixed price brunch 9 AM - 12 PM on weekends",
        "kind":          "TIME_BASED",
        "discount_type": "FIXED_PRICE",
        "fixed_price":   34.90,
        "time_window":   {"start": "09:00", "end": "12:00"},
        "days_of_week":  [6, 7],
        "priority":      20,
    },
    {
        "promotion_id": "promo_bogo_001",
        "name":         "Buy 1 Get 1 Free Drinks",
        "description":  "Buy any drink, get second one free",
        "kind":         "BOGO",
        "buy_quantity": 1,
        "get_quantity": 1,
        "buy_target":   {"type": "CATEGORY", "category_id": "category_beverages"},
        "get_target":   {"type": "CATEGORY", "category_id": "category_beverages"},
        "priority":     5,
        "combinable":   True,
    },
    {
        "promotion_id":        "promo_cart_001",
        "name":                "10% off orders over 100",
        "description":         "10% discount on orders above 100, capped at 20",
        "kind":                "CART_DISCOUNT",
        "discount_type":       "PERCENTAGE",
        "discount_value":      10.0,
        "min_cart_value":      100.0,
        "max_discount_amount": 20.0,
        "priority":            1,
        "combinable":          True,
    },
    {
        "promotion_id":             "promo_welcome_001",
        "name":                     "Welcome10",
        "description":              "10% off first order with code WELCOME10",
        "kind":                     "COUPON",
        "discount_type":            "PERCENTAGE",
        "discount_value":           10.0,
        "requires_code":            True,
        "promo_code":               "WELCOME10",
        "auto_apply":               False,
        "usage_limit_per_customer": 1,
        "priority":                 1,
        "combinable":               True,
    },
]


async def seed_promotions():
    print(f"🔌 Connexion à MongoDB : {DB_NAME} (tenant {TENANT_ID})")
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    now = datetime.now(timezone.utc)

    print("\n---------- CRÉATION DES PROMOTIONS ------------")
    for promo in SAMPLE_PROMOTIONS:
        doc = {
            **promo,
            "tenant_id":   TENANT_ID,
            "is_active":   True,
            "usage_count": 0,
            "created_at":  now,
            "updated_at":  now,
        }
        # Refuse d'insérer une promo que le moteur ignorerait au chargement
        parse_promotion(doc)

        result = await db.promotions.update_one(
            {"promotion_id": promo["promotion_id"]},
            {"$setOnInsert": doc},
            upsert=True,
        )
        if result.upserted_id is None:
            print(f"⏩ {promo['kind']:<14} {promo['promotion_id']} existe déjà.")
        else:
            print(f"✅ Créée : {promo['kind']:<14} -> {promo['name']}")

    print("\n-------------------------------------------")
    print("🚀 TERMINÉ ! PROMOTIONS DE DÉMO CRÉÉES.")
    client.close()

if __name__ == "__main__":
    asyncio.run(seed_promotions())
