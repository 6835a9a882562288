import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from errors import UpstreamFailure, ValidationError
from main import Repositories, create_app

PASSWORD = "Passw0rd!"


class FakeConverter:
    """Converts with a fixed rate table and records every call."""

    def __init__(self, rates=None):
        self.rates = rates or {"EGP": 1.0, "EUR": 0.9, "USD": 0.02}
        self.calls = []

    async def convert_price(self, amount, target_currency):
        self.calls.append((amount, target_currency))
        rate = self.rates.get(target_currency)
        if rate is None:
            raise ValidationError(f"Unsupported currency: {target_currency}")
        return round(amount * rate, 2)


class FailingConverter:
    async def convert_price(self, amount, target_currency):
        raise UpstreamFailure("Currency service unavailable")


@pytest.fixture
def database():
    return mongomock.MongoClient()["travel_platform_test"]


@pytest.fixture
def repos(database):
    return Repositories.from_database(database)


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def client(database, converter):
    return TestClient(create_app(database, converter))


@pytest.fixture
def make_user(repos):
    counter = {"n": 0}

    def _make(account_type="Tourist", accepted=True, **extra):
        counter["n"] += 1
        n = counter["n"]
        user = repos.users.create({
            "account_type": account_type,
            "accepted": accepted,
            "email": f"user{n}@example.com",
            "username": f"user{n}",
            "password": PASSWORD,
            "cart": [],
            **extra,
        })
        return user

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}


@pytest.fixture
def product(repos):
    return repos.products.create({"name": "Papyrus", "price": 100.0, "available_quantity": 3})
