import pytest
from bson import ObjectId

from bookings import BookingService
from errors import InsufficientFunds, NotFound, ValidationError


@pytest.fixture
def service(repos):
    return BookingService(repos.users, repos.activities, repos.bookings, points_per_unit=0.5)


@pytest.fixture
def activity(repos):
    return repos.activities.create({"name": "Desert safari", "price": 200.0, "booking_open": True, "active": True})


def test_booking_debits_wallet_and_accrues_points(service, repos, make_user, activity):
    tourist = make_user(wallet=500.0, loyalty_points=10)

    booking, user = service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    assert user["wallet"] == 300.0
    assert user["loyalty_points"] == 110
    assert booking["price"] == 200.0
    assert booking["loyalty_points"] == 100
    assert booking["status"] == "confirmed"
    assert booking["activity"] == activity["_id"]
    assert repos.activities.get_by_id(str(activity["_id"]))["price"] == 200.0


def test_booking_without_enough_balance(service, repos, make_user, activity):
    tourist = make_user(wallet=50.0)

    with pytest.raises(InsufficientFunds):
        service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    assert repos.users.get_by_id(str(tourist["_id"]))["wallet"] == 50.0
    assert repos.bookings.get_for_user(str(tourist["_id"])) == []


@pytest.mark.parametrize("state", [{"booking_open": False}, {"flagged": True}, {"active": False}])
def test_closed_activity_cannot_be_booked(service, repos, make_user, activity, state):
    repos.activities.update(str(activity["_id"]), state)
    tourist = make_user(wallet=500.0)

    with pytest.raises(ValidationError) as exc:
        service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    assert "not open for booking" in str(exc.value)
    assert repos.users.get_by_id(str(tourist["_id"]))["wallet"] == 500.0


def test_activity_is_booked_once(service, repos, make_user, activity):
    tourist = make_user(wallet=1000.0)
    service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    with pytest.raises(ValidationError) as exc:
        service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    assert "already booked" in str(exc.value)
    assert repos.users.get_by_id(str(tourist["_id"]))["wallet"] == 800.0


def test_free_activity_needs_no_balance(service, repos, make_user):
    free = repos.activities.create({"name": "Walking tour"})
    tourist = make_user()

    booking, user = service.book_activity(str(tourist["_id"]), str(free["_id"]))

    assert booking["price"] == 0
    assert (user["wallet"], user["loyalty_points"]) == (0, 0)


def test_unknown_activity(service, make_user):
    tourist = make_user(wallet=500.0)
    with pytest.raises(NotFound):
        service.book_activity(str(tourist["_id"]), str(ObjectId()))


def test_bookings_are_listed_with_their_activity(service, repos, make_user, activity):
    tourist = make_user(wallet=500.0)
    service.book_activity(str(tourist["_id"]), str(activity["_id"]))

    [booking] = repos.bookings.get_for_user(str(tourist["_id"]))

    assert booking["activity"]["name"] == "Desert safari"
