from unittest.mock import MagicMock

import pytest
from bson import ObjectId

from errors import InsufficientFunds, NotFound, ValidationError
from repositories import MuseumRepo
from security import verify_password
from tests.conftest import PASSWORD


def test_get_by_id_rejects_malformed_id_before_querying():
    database = MagicMock()
    repo = MuseumRepo(database)
    with pytest.raises(ValidationError) as exc:
        repo.get_by_id("not-an-object-id")
    assert "Invalid museum ID" in str(exc.value)
    repo.collection.find_one.assert_not_called()


def test_get_by_id_not_found(repos):
    with pytest.raises(NotFound) as exc:
        repos.museums.get_by_id(str(ObjectId()))
    assert str(exc.value) == "Museum not found"


def test_crud_round(repos):
    created = repos.museums.create({"name": "Egyptian Museum", "ticket_prices": {"foreigner": 100}})
    assert created["created_at"] == created["updated_at"]

    updated = repos.museums.update(str(created["_id"]), {"location": "Tahrir"})
    assert updated["location"] == "Tahrir"
    assert updated["name"] == "Egyptian Museum"

    repos.museums.delete(str(created["_id"]))
    with pytest.raises(NotFound):
        repos.museums.delete(str(created["_id"]))


def test_update_missing_document(repos):
    with pytest.raises(NotFound):
        repos.activities.update(str(ObjectId()), {"name": "x"})


def test_references_are_stored_as_object_ids(repos):
    tag = repos.tags.create({"name": "history"})
    museum = repos.museums.create({"name": "Citadel", "tags": [str(tag["_id"])]})
    raw = repos.museums.collection.find_one({"_id": museum["_id"]})
    assert raw["tags"] == [tag["_id"]]


def test_malformed_reference_is_rejected(repos):
    with pytest.raises(ValidationError):
        repos.museums.create({"name": "Citadel", "tags": ["bogus"]})


def test_museum_tags_are_populated(repos):
    tag = repos.tags.create({"name": "history"})
    museum = repos.museums.create({"name": "Citadel", "tags": [str(tag["_id"])]})
    fetched = repos.museums.get_by_id(str(museum["_id"]))
    assert fetched["tags"][0]["name"] == "history"


def test_update_returns_populated_references(repos):
    tag = repos.tags.create({"name": "history"})
    museum = repos.museums.create({"name": "Citadel"})
    updated = repos.museums.update(str(museum["_id"]), {"tags": [str(tag["_id"])]})
    assert updated["tags"][0]["name"] == "history"
    assert updated == repos.museums.get_by_id(str(museum["_id"]))


def test_get_by_tags(repos):
    history = repos.tags.create({"name": "history"})
    art = repos.tags.create({"name": "art"})
    repos.museums.create({"name": "Citadel", "tags": [str(history["_id"])]})
    repos.museums.create({"name": "Gallery", "tags": [str(art["_id"])]})
    found = repos.museums.get_by_tags([str(art["_id"])])
    assert [m["name"] for m in found] == ["Gallery"]


def test_itinerary_populates_activities(repos):
    activity = repos.activities.create({"name": "Felucca ride", "price": 50})
    itinerary = repos.itineraries.create({
        "name": "Nile day",
        "activities": [{"activity": str(activity["_id"]), "duration": 60}],
    })
    fetched = repos.itineraries.get_by_id(str(itinerary["_id"]))
    assert fetched["activities"][0]["activity"]["name"] == "Felucca ride"
    assert fetched["activities"][0]["duration"] == 60


def test_flag_and_toggle(repos):
    activity = repos.activities.create({"name": "Dive", "flagged": False, "active": True})
    assert repos.activities.flag(str(activity["_id"]))["flagged"] is True
    assert repos.activities.set_active(str(activity["_id"]), False)["active"] is False


def test_user_password_is_hashed(repos, make_user):
    user = make_user()
    assert "password" not in user
    stored = repos.users.collection.find_one({"_id": user["_id"]})
    assert stored["password"] != PASSWORD
    assert verify_password(PASSWORD, stored["password"])


def test_user_update_without_password_keeps_hash(repos, make_user):
    user = make_user()
    before = repos.users.collection.find_one({"_id": user["_id"]})["password"]
    updated = repos.users.update(str(user["_id"]), {"name": "Nour"})
    assert updated["name"] == "Nour"
    assert "password" not in updated
    assert repos.users.collection.find_one({"_id": user["_id"]})["password"] == before


def test_user_update_with_password_rehashes(repos, make_user):
    user = make_user()
    repos.users.update(str(user["_id"]), {"password": "NewPassw0rd"})
    stored = repos.users.collection.find_one({"_id": user["_id"]})
    assert verify_password("NewPassw0rd", stored["password"])


def test_user_update_rejects_taken_email(repos, make_user):
    make_user()
    other = make_user()
    with pytest.raises(ValidationError) as exc:
        repos.users.update(str(other["_id"]), {"email": "user1@example.com"})
    assert "Email already exists" in str(exc.value)
    assert repos.users.get_by_id(str(other["_id"]))["email"] == "user2@example.com"


def test_user_update_keeps_own_email(repos, make_user):
    user = make_user()
    updated = repos.users.update(str(user["_id"]), {"email": "user1@example.com", "name": "Nour"})
    assert updated["email"] == "user1@example.com"


def test_user_update_ignores_nulls(repos, make_user):
    user = make_user()
    updated = repos.users.update(str(user["_id"]), {"email": None, "password": None, "name": "Nour"})
    assert updated["email"] == "user1@example.com"
    assert updated["name"] == "Nour"
    stored = repos.users.collection.find_one({"_id": user["_id"]})
    assert verify_password(PASSWORD, stored["password"])


def test_debit_wallet_credits_points(repos, make_user):
    user = make_user(wallet=100.0, loyalty_points=5)
    updated = repos.users.debit_wallet(str(user["_id"]), 40.0, 20)
    assert updated["wallet"] == 60.0
    assert updated["loyalty_points"] == 25


def test_debit_wallet_insufficient_balance(repos, make_user):
    user = make_user(wallet=10.0, loyalty_points=0)
    with pytest.raises(InsufficientFunds):
        repos.users.debit_wallet(str(user["_id"]), 40.0, 20)
    stored = repos.users.get_by_id(str(user["_id"]))
    assert (stored["wallet"], stored["loyalty_points"]) == (10.0, 0)


def test_debit_wallet_unknown_user(repos):
    with pytest.raises(NotFound):
        repos.users.debit_wallet(str(ObjectId()), 1.0)


def test_redeem_points(repos, make_user):
    user = make_user(wallet=5.0, loyalty_points=1000)
    updated = repos.users.redeem_points(str(user["_id"]), 600, 0.01)
    assert updated["loyalty_points"] == 400
    assert updated["wallet"] == 11.0


@pytest.mark.parametrize("points", [0, -5, 2.5, True])
def test_redeem_points_rejects_bad_amount(repos, make_user, points):
    user = make_user(loyalty_points=1000)
    with pytest.raises(ValidationError):
        repos.users.redeem_points(str(user["_id"]), points, 0.01)


def test_redeem_more_points_than_held(repos, make_user):
    user = make_user(loyalty_points=10)
    with pytest.raises(ValidationError) as exc:
        repos.users.redeem_points(str(user["_id"]), 11, 0.01)
    assert "Not enough loyalty points" in str(exc.value)
    assert repos.users.get_by_id(str(user["_id"]))["loyalty_points"] == 10


def test_category_names_are_unique(repos):
    first = repos.categories.create({"name": "Food"})
    second = repos.categories.create({"name": "Sports"})
    with pytest.raises(ValidationError):
        repos.categories.create({"name": "Food"})
    with pytest.raises(ValidationError):
        repos.categories.update(str(second["_id"]), {"name": "Food"})
    assert repos.categories.update(str(first["_id"]), {"name": "Food"})["name"] == "Food"


def test_user_password_policy(repos):
    with pytest.raises(ValidationError):
        repos.users.create({"account_type": "Tourist", "email": "a@b.com", "username": "abc", "password": "short"})


def test_duplicate_user(repos, make_user):
    make_user()
    with pytest.raises(ValidationError):
        repos.users.create({"account_type": "Tourist", "email": "user1@example.com", "username": "other", "password": PASSWORD})


def test_get_by_type(repos, make_user):
    make_user("Seller")
    make_user("Tourist")
    sellers = repos.users.get_by_type("Seller")
    assert len(sellers) == 1
    assert sellers[0]["account_type"] == "Seller"


def test_notification_mark_read_is_scoped_to_owner(repos, make_user):
    owner, other = make_user(), make_user()
    note = repos.notifications.create({"user": str(owner["_id"]), "title": "t", "message": "m", "read": False})
    with pytest.raises(NotFound):
        repos.notifications.mark_read(str(note["_id"]), str(other["_id"]))
    assert repos.notifications.mark_read(str(note["_id"]), str(owner["_id"]))["read"] is True


def test_password_hashing_has_no_web_dependency():
    import repositories
    import security

    assert repositories.hash_password is security.hash_password
    modules = {getattr(value, "__module__", "") or "" for value in vars(security).values()}
    assert not any(name.startswith(("fastapi", "starlette")) for name in modules)
