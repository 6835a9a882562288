from typing import Any, Dict, Tuple

from errors import ValidationError
from observability import get_logger
from repositories import ActivityRepo, BookingRepo, UserRepo
from schemas import Booking

logger = get_logger(__name__)


class BookingService:
    """Books activities against the tourist's wallet.

    The activity price (base currency) is debited and loyalty points are
    credited in the same user update; the booking is recorded afterwards.
    """

    def __init__(self, users: UserRepo, activities: ActivityRepo, bookings: BookingRepo, points_per_unit: float):
        self.users = users
        self.activities = activities
        self.bookings = bookings
        self.points_per_unit = points_per_unit

    def book_activity(self, user_id: str, activity_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Returns (booking, user) with the user's updated wallet and points."""
        activity = self.activities.get_by_id(activity_id)
        if activity.get("flagged") or activity.get("active") is False or not activity.get("booking_open", True):
            raise ValidationError("Activity is not open for booking")
        if self.bookings.has_confirmed(user_id, activity["_id"]):
            raise ValidationError("Activity already booked")

        price = float(activity.get("price") or 0)
        points = int(price * self.points_per_unit)
        user = self.users.debit_wallet(user_id, price, points)

        doc = Booking(user=user_id, activity=str(activity["_id"]), price=price, loyalty_points=points).model_dump()
        booking = self.bookings.create(doc)
        logger.info("Activity booked", user_id=user_id, activity_id=activity_id, price=price, loyalty_points=points)
        return booking, user
