import pytest
from fastapi.testclient import TestClient

from core.dependencies import get_current_user
from routers.promotions import get_promotion_engine
from services.promotion_engine import PromotionEngine
from helpers import TENANT, FakePromotionStore


@pytest.fixture
def store():
    """Catalogue vide ; chaque test y ajoute ses promotions."""
    return FakePromotionStore()


@pytest.fixture
def engine(store):
    return PromotionEngine(store)


@pytest.fixture
def staff_user():
    # Modifiable par les tests (rôle, tenant)
    return {
        "user_id":   "usr_cashier01",
        "tenant_id": TENANT,
        "role":      "CASHIER",
        "is_active": True,
    }


@pytest.fixture
def app(store, staff_user):
    """App FastAPI sans Mongo : moteur branché sur le faux store, utilisateur injecté."""
    from main import app as fastapi_app

    fastapi_app.dependency_overrides[get_promotion_engine] = lambda: PromotionEngine(store)
    fastapi_app.dependency_overrides[get_current_user] = lambda: staff_user
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    # Pas de `with` : le lifespan (connexion Mongo) n'est pas déclenché
    return TestClient(app)
