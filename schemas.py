"""
Database Schemas for the Travel Platform

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Museum -> "museum").

We will use these collections:
- user: every account (tourists, advertisers, sellers, tour guides, tourism
  governors, admins); the shopping cart is embedded in the tourist's document
- product: items sold by sellers, priced in the base currency
- museum: historical places with ticket prices
- activity: advertiser-run events
- itinerary: tour-guide-run tours composed of activities
- tag: labels referenced by museums, activities and itineraries
- category: activity categories managed by admins
- booking: a tourist's paid reservation of an activity
- notification: messages shown to a user (e.g. "your itinerary was flagged")

Reference fields hold ObjectId strings here; repositories store them as
ObjectIds so they can be populated.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AccountType(str, Enum):
    TOURIST = "Tourist"
    ADVERTISER = "Advertiser"
    SELLER = "Seller"
    TOUR_GUIDE = "TourGuide"
    TOURISM_GOVERNOR = "TourismGovernor"
    ADMIN = "Admin"


class CartItem(BaseModel):
    product: str = Field(..., description="Reference to product _id")
    quantity: int = Field(..., ge=1)


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    account_type: AccountType
    accepted: bool = False
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password: str = Field(..., description="BCrypt hash of password")
    mobile_number: Optional[str] = None
    nationality: Optional[str] = None
    dob: Optional[datetime] = None
    job: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    hotline: Optional[str] = None
    years_of_experience: Optional[int] = Field(None, ge=0)
    wallet: float = 0
    loyalty_points: int = 0
    cart: List[CartItem] = Field(default_factory=list)


class Review(BaseModel):
    user: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    available_quantity: int = Field(0, ge=0)
    seller: Optional[str] = None
    picture: Optional[str] = None
    reviews: List[Review] = Field(default_factory=list)
    archived: bool = False


class TicketPrices(BaseModel):
    foreigner: Optional[float] = Field(None, ge=0)
    native: Optional[float] = Field(None, ge=0)
    student: Optional[float] = Field(None, ge=0)


class Museum(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    opening_hours: Optional[str] = None
    ticket_prices: TicketPrices = Field(default_factory=TicketPrices)
    pictures: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None


class Activity(BaseModel):
    name: str = Field(..., min_length=1)
    date: Optional[datetime] = None
    time: Optional[str] = None
    location: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    special_discounts: Optional[str] = None
    booking_open: bool = True
    created_by: Optional[str] = None
    flagged: bool = False
    active: bool = True


class ItineraryStop(BaseModel):
    activity: str
    duration: Optional[int] = Field(None, ge=0, description="Minutes")


class Itinerary(BaseModel):
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    activities: List[ItineraryStop] = Field(default_factory=list)
    language: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    timeline: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    flagged: bool = False
    active: bool = True


class Tag(BaseModel):
    name: str = Field(..., min_length=1)
    type: Optional[str] = None


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"


class Notification(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    read: bool = False


class Category(BaseModel):
    name: str = Field(..., min_length=1)


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user: str
    activity: str
    price: float = Field(0, ge=0, description="Amount debited, in the base currency")
    loyalty_points: int = Field(0, ge=0, description="Points credited for this booking")
    status: BookingStatus = BookingStatus.CONFIRMED
