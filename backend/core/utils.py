import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from zoneinfo import ZoneInfo

from config import settings

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Arrondi monétaire au centime (demi supérieur)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_business_time(value: datetime) -> datetime:
    """
    Heure murale du restaurant (naive), dans settings.BUSINESS_TIMEZONE.
    Une datetime naive est considérée comme déjà locale.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE)).replace(tzinfo=None)


def normalize_promo_code(code: Optional[str]) -> Optional[str]:
    """ ' save10 ' -> 'SAVE10' ; les codes sont stockés en majuscules."""
    if code is None:
        return None
    cleaned = code.strip().upper()
    return cleaned or None


def mask_identifier(identifier: Optional[str]) -> str:
    """
    Masque un identifiant client (téléphone ou email) pour les logs.
    +1 555 123 4567 -> +1 ••• •• 67
    jane@example.com -> j•••@example.com
    """
    if not identifier:
        return ""

    if "@" in identifier:
        local, _, domain = identifier.partition("@")
        return f"{local[:1]}•••@{domain}"

    clean = identifier.replace(" ", "")
    if len(clean) <= 4:
        return "••••"

    # On garde l'indicatif (+ suivi de 1-3 chiffres) et les 2 derniers caractères
    match = re.match(r"^(\+\d{1,3})", clean)
    prefix = match.group(1) if match else ""
    suffix = clean[-2:]
    return f"{prefix} ••• •• {suffix}" if prefix else f"••• •• {suffix}"
