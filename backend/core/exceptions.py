from typing import Optional

from fastapi import HTTPException, status


# ── Erreurs métier du moteur de promotions ────────────────────────────────────

class PromotionError(Exception):
    """Base de toutes les erreurs levées par le moteur."""


class ValidationError(PromotionError):
    """Contexte de commande mal formé (aucun article, tenant absent...)."""


class InvalidPromoCode(PromotionError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Invalid or expired promo code: {code}")


class ConditionsNotMet(PromotionError):
    """Un code demandé explicitement ne remplit pas ses conditions."""

    def __init__(self, promotion_id: str, reason: Optional[str] = None):
        self.promotion_id = promotion_id
        self.reason = reason or "Promotion conditions not met"
        super().__init__(self.reason)


class UsageLimitExceeded(ConditionsNotMet):
    pass


class PersistenceError(PromotionError):
    """Erreur du collaborateur de persistance, propagée telle quelle."""


# ── Réponses HTTP ─────────────────────────────────────────────────────────────

def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Access denied") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def not_found_exception(resource: str = "Resource") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} not found",
    )


def bad_request_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


def unprocessable_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=detail,
    )


def service_unavailable_exception(detail: str = "Storage temporarily unavailable") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=detail,
    )
