import os
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import RequestContext, create_access_token, get_currency, get_current_user, require_role
from bookings import BookingService
from cart import CartService
from config import get_settings
from currency import CurrencyConverter, localize_museums, localize_prices
from database import db as default_db, serialize
from errors import AppError, Forbidden, Unauthorized, ValidationError
from observability import CorrelationMiddleware, configure_logging, get_logger
from repositories import (
    ActivityRepo,
    BookingRepo,
    CartRepo,
    CategoryRepo,
    ItineraryRepo,
    MuseumRepo,
    NotificationRepo,
    ProductRepo,
    TagRepo,
    UserRepo,
)
from schemas import (
    AccountType,
    Activity as ActivitySchema,
    Category as CategorySchema,
    Itinerary as ItinerarySchema,
    ItineraryStop,
    Museum as MuseumSchema,
    Notification as NotificationSchema,
    NotificationType,
    Product as ProductSchema,
    Tag as TagSchema,
    TicketPrices,
    User as UserSchema,
)
from security import verify_password

logger = get_logger(__name__)

TOURIST = AccountType.TOURIST.value
ADVERTISER = AccountType.ADVERTISER.value
SELLER = AccountType.SELLER.value
TOUR_GUIDE = AccountType.TOUR_GUIDE.value
GOVERNOR = AccountType.TOURISM_GOVERNOR.value
ADMIN = AccountType.ADMIN.value


@dataclass
class Repositories:
    users: UserRepo
    carts: CartRepo
    products: ProductRepo
    museums: MuseumRepo
    activities: ActivityRepo
    itineraries: ItineraryRepo
    tags: TagRepo
    categories: CategoryRepo
    bookings: BookingRepo
    notifications: NotificationRepo

    @classmethod
    def from_database(cls, database: Database) -> "Repositories":
        return cls(
            users=UserRepo(database),
            carts=CartRepo(database),
            products=ProductRepo(database),
            museums=MuseumRepo(database),
            activities=ActivityRepo(database),
            itineraries=ItineraryRepo(database),
            tags=TagRepo(database),
            categories=CategoryRepo(database),
            bookings=BookingRepo(database),
            notifications=NotificationRepo(database),
        )


router = APIRouter()

# Helpers

def get_repos(request: Request) -> Repositories:
    return request.app.state.repos


def get_converter(request: Request):
    return request.app.state.converter


def get_cart_service(request: Request) -> CartService:
    return request.app.state.cart_service


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def envelope(message: str, data: Any = None, **extra) -> Dict[str, Any]:
    return {"message": message, "data": serialize(data if data is not None else []), **extra}


def ensure_owner(doc: Dict[str, Any], field: str, ctx: RequestContext) -> None:
    if ctx.account_type == ADMIN:
        return
    if str(doc.get(field)) != ctx.user_id:
        raise Forbidden("You can only modify your own content")


def notify(repos: Repositories, user_id: Any, title: str, message: str, kind: str = NotificationType.WARNING.value) -> None:
    if user_id is None:
        return
    doc = NotificationSchema(user=str(user_id), title=title, message=message, type=kind).model_dump()
    repos.notifications.create(doc)


def split_ids(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def name_filter(name: str) -> Dict[str, Any]:
    # case-insensitive substring match on the literal text
    return {"$regex": re.escape(name), "$options": "i"}


# Request/Response Models

class RegisterRequest(BaseModel):
    account_type: AccountType
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password: str
    mobile_number: Optional[str] = None
    nationality: Optional[str] = None
    dob: Optional[datetime] = None
    job: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    hotline: Optional[str] = None
    years_of_experience: Optional[int] = Field(None, ge=0)


class LoginRequest(BaseModel):
    username: str
    password: str


class UserUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    mobile_number: Optional[str] = None
    nationality: Optional[str] = None
    dob: Optional[datetime] = None
    job: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    hotline: Optional[str] = None
    years_of_experience: Optional[int] = Field(None, ge=0)


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int


class BookActivityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_id: str = Field(..., alias="activityId")


class RedeemRequest(BaseModel):
    points: int = Field(..., gt=0)


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    available_quantity: Optional[int] = Field(None, ge=0)
    picture: Optional[str] = None


class ArchiveRequest(BaseModel):
    archived: bool = True


class ActiveRequest(BaseModel):
    active: bool


class MuseumUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    opening_hours: Optional[str] = None
    ticket_prices: Optional[TicketPrices] = None
    pictures: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class ActivityUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime] = None
    time: Optional[str] = None
    location: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    special_discounts: Optional[str] = None
    booking_open: Optional[bool] = None


class ItineraryUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    activities: Optional[List[ItineraryStop]] = None
    language: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    timeline: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    tags: Optional[List[str]] = None


# Utility Routes

@router.get("/")
def root():
    return {"message": "Travel Platform API running"}


@router.get("/health")
def health(repos: Repositories = Depends(get_repos)):
    try:
        collections = repos.users.db.list_collection_names()
        database = "ok"
    except Exception as exc:
        logger.error("Database health check failed", error=str(exc))
        collections, database = [], f"error: {exc}"
    return {"backend": "ok", "database": database, "collections": collections}


# Auth Routes

@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, repos: Repositories = Depends(get_repos)):
    if payload.account_type == AccountType.ADMIN:
        raise ValidationError("Admin accounts can only be created by an admin")
    user_doc = UserSchema(
        **payload.model_dump(exclude_none=True),
        accepted=payload.account_type == AccountType.TOURIST,
    ).model_dump(exclude_none=True)
    user = repos.users.create(user_doc)
    return envelope("User registered successfully", user)


@router.post("/auth/login")
def login(payload: LoginRequest, repos: Repositories = Depends(get_repos)):
    user = repos.users.find_for_login(payload.username)
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise Unauthorized("Invalid username or password")
    if not user.get("accepted"):
        raise Forbidden("Account is pending approval")
    user.pop("password", None)
    token = create_access_token({"sub": str(user["_id"])})
    return envelope("Logged in successfully", {"access_token": token, "token_type": "bearer", "user": user})


@router.get("/users/me")
def me(current_user=Depends(get_current_user)):
    return envelope("User fetched successfully", current_user)


@router.put("/users/me")
def update_me(
    payload: UserUpdateRequest,
    ctx: RequestContext = Depends(require_role()),
    repos: Repositories = Depends(get_repos),
):
    user = repos.users.update(ctx.user_id, payload.model_dump(exclude_unset=True))
    return envelope("User updated successfully", user)


@router.post("/users/tourists/redeem")
def redeem_points(
    payload: RedeemRequest,
    ctx: RequestContext = Depends(require_role(TOURIST)),
    repos: Repositories = Depends(get_repos),
):
    user = repos.users.redeem_points(ctx.user_id, payload.points, get_settings().LOYALTY_REDEEM_RATE)
    logger.info("Loyalty points redeemed", user_id=ctx.user_id, points=payload.points)
    return envelope(
        "Points redeemed successfully",
        {"wallet": user.get("wallet", 0), "loyalty_points": user.get("loyalty_points", 0)},
    )


# Admin Routes

@router.get("/users")
def list_users(
    account_type: Optional[AccountType] = None,
    ctx: RequestContext = Depends(require_role(ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    users = repos.users.get_by_type(account_type.value) if account_type else repos.users.get_all()
    return envelope("Users fetched successfully", {"users": users})


@router.post("/users", status_code=201)
def admin_create_user(
    payload: RegisterRequest,
    ctx: RequestContext = Depends(require_role(ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    user_doc = UserSchema(**payload.model_dump(exclude_none=True), accepted=True).model_dump(exclude_none=True)
    user = repos.users.create(user_doc)
    return envelope("User created successfully", user)


@router.put("/users/{user_id}/accept")
def accept_user(user_id: str, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    user = repos.users.accept(user_id)
    notify(repos, user["_id"], "Account accepted", "Your account has been approved", NotificationType.SUCCESS.value)
    return envelope("User accepted successfully", user)


@router.delete("/users/{user_id}")
def delete_user(user_id: str, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    user = repos.users.delete(user_id)
    return envelope("User deleted successfully", {"user": user})


# Cart Routes

@router.get("/cart")
async def get_cart(ctx: RequestContext = Depends(require_role(TOURIST)), service: CartService = Depends(get_cart_service)):
    cart = await service.get_cart(ctx.user_id, ctx.currency)
    return {"message": "Cart fetched successfully", "cart": serialize(cart), "currency": ctx.currency}


@router.post("/cart", status_code=201)
def add_to_cart(
    payload: AddToCartRequest,
    ctx: RequestContext = Depends(require_role(TOURIST)),
    service: CartService = Depends(get_cart_service),
):
    try:
        cart, created = service.add_product(ctx.user_id, payload.product_id, payload.quantity)
    except AppError as exc:
        logger.error("Error adding product to cart", error=exc.message, product_id=payload.product_id)
        raise
    message = "Product added to cart successfully" if created else "Product quantity updated successfully"
    return {"message": message, "cart": serialize(cart)}


@router.delete("/cart/{product_id}")
def remove_from_cart(
    product_id: str,
    ctx: RequestContext = Depends(require_role(TOURIST)),
    service: CartService = Depends(get_cart_service),
):
    try:
        cart = service.remove_product(ctx.user_id, product_id)
    except AppError as exc:
        logger.error("Error removing product from cart", error=exc.message, product_id=product_id)
        raise
    return {"message": "Product removed from cart successfully", "cart": serialize(cart)}


# Product Routes

@router.get("/products")
async def list_products(
    name: Optional[str] = None,
    include_archived: bool = False,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    q: Dict[str, Any] = {}
    if name:
        q["name"] = name_filter(name)
    if not include_archived:
        q["archived"] = {"$ne": True}
    products = await run_in_threadpool(repos.products.get_all, q)
    products = await localize_prices(products, currency, converter, default=0)
    return envelope("Products fetched successfully", {"products": products}, currency=currency)


@router.get("/products/mine")
def my_products(ctx: RequestContext = Depends(require_role(SELLER, ADMIN)), repos: Repositories = Depends(get_repos)):
    return envelope("Products fetched successfully", {"products": repos.products.get_by_seller(ctx.user_id)})


@router.get("/products/{product_id}")
async def get_product(
    product_id: str,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    product = await run_in_threadpool(repos.products.get_by_id, product_id)
    [product] = await localize_prices([product], currency, converter, default=0)
    return envelope("Product fetched successfully", {"product": product}, currency=currency)


@router.post("/products", status_code=201)
def create_product(
    payload: ProductSchema,
    ctx: RequestContext = Depends(require_role(SELLER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    doc = {**payload.model_dump(exclude_none=True), "seller": ctx.user_id}
    product = repos.products.create(doc)
    return envelope("Product created successfully", {"productId": product["_id"]})


@router.put("/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdateRequest,
    ctx: RequestContext = Depends(require_role(SELLER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.products.get_by_id(product_id), "seller", ctx)
    product = repos.products.update(product_id, payload.model_dump(exclude_unset=True))
    return envelope("Product updated successfully", {"product": product})


@router.put("/products/{product_id}/archive")
def archive_product(
    product_id: str,
    payload: ArchiveRequest,
    ctx: RequestContext = Depends(require_role(SELLER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.products.get_by_id(product_id), "seller", ctx)
    product = repos.products.archive(product_id, payload.archived)
    return envelope("Product archive state updated", {"product": product})


@router.delete("/products/{product_id}")
def delete_product(
    product_id: str,
    ctx: RequestContext = Depends(require_role(SELLER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.products.get_by_id(product_id), "seller", ctx)
    product = repos.products.delete(product_id)
    return envelope("Product deleted successfully", {"product": product})


# Museum Routes

@router.get("/museums")
async def list_museums(
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    try:
        museums = await run_in_threadpool(repos.museums.get_all)
        museums = await localize_museums(museums, currency, converter)
    except AppError as exc:
        logger.error("Error fetching museums", error=exc.message, currency=currency)
        raise
    return envelope("Museums fetched successfully", {"museums": museums}, currency=currency)


@router.get("/museums/mine")
def my_museums(ctx: RequestContext = Depends(require_role(GOVERNOR, ADMIN)), repos: Repositories = Depends(get_repos)):
    return envelope("Museums fetched successfully", {"museums": repos.museums.get_by_creator(ctx.user_id)})


@router.get("/museums/tags")
def museums_by_tags(tag_ids: Optional[str] = Query(None, alias="tagIds"), repos: Repositories = Depends(get_repos)):
    ids = split_ids(tag_ids)
    if not ids:
        raise ValidationError("Invalid or missing tagIds parameter")
    return envelope("Museums fetched successfully", {"museums": repos.museums.get_by_tags(ids)})


@router.get("/museums/{museum_id}")
def get_museum(museum_id: str, repos: Repositories = Depends(get_repos)):
    return envelope("Museum fetched successfully", {"museum": repos.museums.get_by_id(museum_id)})


@router.post("/museums", status_code=201)
def create_museum(
    payload: MuseumSchema,
    ctx: RequestContext = Depends(require_role(GOVERNOR, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    doc = {**payload.model_dump(exclude_none=True), "created_by": ctx.user_id}
    museum = repos.museums.create(doc)
    return envelope("Museum created successfully", {"museumId": museum["_id"]})


@router.put("/museums/{museum_id}")
def update_museum(
    museum_id: str,
    payload: MuseumUpdateRequest,
    ctx: RequestContext = Depends(require_role(GOVERNOR, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.museums.get_by_id(museum_id), "created_by", ctx)
    museum = repos.museums.update(museum_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return envelope("Museum updated successfully", {"museum": museum})


@router.delete("/museums/{museum_id}")
def delete_museum(
    museum_id: str,
    ctx: RequestContext = Depends(require_role(GOVERNOR, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.museums.get_by_id(museum_id), "created_by", ctx)
    museum = repos.museums.delete(museum_id)
    return envelope("Museum deleted successfully", {"museum": museum})


# Activity Routes

@router.get("/activities")
async def list_activities(
    name: Optional[str] = None,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    q = {"name": name_filter(name)} if name else None
    activities = await run_in_threadpool(repos.activities.get_all, q)
    activities = await localize_prices(activities, currency, converter)
    return envelope("Activities fetched successfully", {"activities": activities}, currency=currency)


@router.post("/activities/bookings", status_code=201)
def book_activity(
    payload: BookActivityRequest,
    ctx: RequestContext = Depends(require_role(TOURIST)),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking, user = service.book_activity(ctx.user_id, payload.activity_id)
    except AppError as exc:
        logger.error("Error booking activity", error=exc.message, activity_id=payload.activity_id)
        raise
    return envelope(
        "Activity booked successfully",
        {"booking": booking, "wallet": user.get("wallet", 0), "loyalty_points": user.get("loyalty_points", 0)},
    )


@router.get("/activities/bookings")
def my_bookings(ctx: RequestContext = Depends(require_role(TOURIST)), repos: Repositories = Depends(get_repos)):
    return envelope("Bookings fetched successfully", {"bookings": repos.bookings.get_for_user(ctx.user_id)})


@router.get("/activities/mine")
def my_activities(ctx: RequestContext = Depends(require_role(ADVERTISER, ADMIN)), repos: Repositories = Depends(get_repos)):
    return envelope("Activities fetched successfully", {"activities": repos.activities.get_by_creator(ctx.user_id)})


@router.get("/activities/{activity_id}")
async def get_activity(
    activity_id: str,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    activity = await run_in_threadpool(repos.activities.get_by_id, activity_id)
    [activity] = await localize_prices([activity], currency, converter)
    return envelope("Activity fetched successfully", {"activity": activity}, currency=currency)


@router.post("/activities", status_code=201)
def create_activity(
    payload: ActivitySchema,
    ctx: RequestContext = Depends(require_role(ADVERTISER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    doc = {**payload.model_dump(exclude_none=True), "created_by": ctx.user_id, "flagged": False}
    activity = repos.activities.create(doc)
    return envelope("Activity created successfully", {"activityId": activity["_id"]})


@router.put("/activities/{activity_id}")
def update_activity(
    activity_id: str,
    payload: ActivityUpdateRequest,
    ctx: RequestContext = Depends(require_role(ADVERTISER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.activities.get_by_id(activity_id), "created_by", ctx)
    activity = repos.activities.update(activity_id, payload.model_dump(exclude_unset=True))
    return envelope("Activity updated successfully", {"activity": activity})


@router.delete("/activities/{activity_id}")
def delete_activity(
    activity_id: str,
    ctx: RequestContext = Depends(require_role(ADVERTISER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.activities.get_by_id(activity_id), "created_by", ctx)
    activity = repos.activities.delete(activity_id)
    return envelope("Activity deleted successfully", {"activity": activity})


@router.put("/activities/{activity_id}/flag")
def flag_activity(activity_id: str, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    activity = repos.activities.flag(activity_id)
    notify(repos, activity.get("created_by"), "Activity flagged", f"Your activity '{activity.get('name')}' was flagged as inappropriate")
    return envelope("Activity flagged successfully", {"activity": activity})


@router.put("/activities/{activity_id}/active")
def toggle_activity(
    activity_id: str,
    payload: ActiveRequest,
    ctx: RequestContext = Depends(require_role(ADVERTISER, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.activities.get_by_id(activity_id), "created_by", ctx)
    activity = repos.activities.set_active(activity_id, payload.active)
    return envelope("Activity status updated", {"activity": activity})


# Itinerary Routes

@router.get("/itineraries")
async def list_itineraries(
    name: Optional[str] = None,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    q = {"name": name_filter(name)} if name else None
    itineraries = await run_in_threadpool(repos.itineraries.get_all, q)
    itineraries = await localize_prices(itineraries, currency, converter)
    return envelope("Itineraries fetched successfully", {"itineraries": itineraries}, currency=currency)


@router.get("/itineraries/mine")
def my_itineraries(ctx: RequestContext = Depends(require_role(TOUR_GUIDE, ADMIN)), repos: Repositories = Depends(get_repos)):
    return envelope("Itineraries fetched successfully", {"itineraries": repos.itineraries.get_by_creator(ctx.user_id)})


@router.get("/itineraries/{itinerary_id}")
async def get_itinerary(
    itinerary_id: str,
    currency: str = Depends(get_currency),
    repos: Repositories = Depends(get_repos),
    converter=Depends(get_converter),
):
    itinerary = await run_in_threadpool(repos.itineraries.get_by_id, itinerary_id)
    [itinerary] = await localize_prices([itinerary], currency, converter)
    return envelope("Itinerary fetched successfully", {"itinerary": itinerary}, currency=currency)


@router.post("/itineraries", status_code=201)
def create_itinerary(
    payload: ItinerarySchema,
    ctx: RequestContext = Depends(require_role(TOUR_GUIDE, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    doc = {**payload.model_dump(exclude_none=True), "created_by": ctx.user_id, "flagged": False}
    itinerary = repos.itineraries.create(doc)
    return envelope("Itinerary created successfully", {"itineraryId": itinerary["_id"]})


@router.put("/itineraries/{itinerary_id}")
def update_itinerary(
    itinerary_id: str,
    payload: ItineraryUpdateRequest,
    ctx: RequestContext = Depends(require_role(TOUR_GUIDE, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.itineraries.get_by_id(itinerary_id), "created_by", ctx)
    itinerary = repos.itineraries.update(itinerary_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return envelope("Itinerary updated successfully", {"itinerary": itinerary})


@router.delete("/itineraries/{itinerary_id}")
def delete_itinerary(
    itinerary_id: str,
    ctx: RequestContext = Depends(require_role(TOUR_GUIDE, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.itineraries.get_by_id(itinerary_id), "created_by", ctx)
    itinerary = repos.itineraries.delete(itinerary_id)
    return envelope("Itinerary deleted successfully", {"itinerary": itinerary})


@router.put("/itineraries/{itinerary_id}/flag")
def flag_itinerary(itinerary_id: str, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    itinerary = repos.itineraries.flag(itinerary_id)
    notify(
        repos,
        repos.itineraries.get_creator(itinerary_id),
        "Itinerary flagged",
        f"Your itinerary '{itinerary.get('name')}' was flagged as inappropriate",
    )
    return envelope("Itinerary flagged successfully", {"itinerary": itinerary})


@router.put("/itineraries/{itinerary_id}/active")
def toggle_itinerary(
    itinerary_id: str,
    payload: ActiveRequest,
    ctx: RequestContext = Depends(require_role(TOUR_GUIDE, ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    ensure_owner(repos.itineraries.get_by_id(itinerary_id), "created_by", ctx)
    itinerary = repos.itineraries.set_active(itinerary_id, payload.active)
    return envelope("Itinerary status updated", {"itinerary": itinerary})


# Tag Routes

@router.get("/tags")
def list_tags(repos: Repositories = Depends(get_repos)):
    return envelope("Tags fetched successfully", {"tags": repos.tags.get_all()})


@router.post("/tags", status_code=201)
def create_tag(payload: TagSchema, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    tag = repos.tags.create(payload.model_dump(exclude_none=True))
    return envelope("Tag created successfully", {"tag": tag})


# Category Routes

@router.get("/categories")
def list_categories(repos: Repositories = Depends(get_repos)):
    return envelope("Categories fetched successfully", {"categories": repos.categories.get_all()})


@router.get("/categories/{category_id}")
def get_category(category_id: str, repos: Repositories = Depends(get_repos)):
    return envelope("Category fetched successfully", {"category": repos.categories.get_by_id(category_id)})


@router.post("/categories", status_code=201)
def create_category(payload: CategorySchema, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    category = repos.categories.create(payload.model_dump())
    return envelope("Category created successfully", {"category": category})


@router.put("/categories/{category_id}")
def update_category(
    category_id: str,
    payload: CategorySchema,
    ctx: RequestContext = Depends(require_role(ADMIN)),
    repos: Repositories = Depends(get_repos),
):
    category = repos.categories.update(category_id, payload.model_dump())
    return envelope("Category updated successfully", {"category": category})


@router.delete("/categories/{category_id}")
def delete_category(category_id: str, ctx: RequestContext = Depends(require_role(ADMIN)), repos: Repositories = Depends(get_repos)):
    category = repos.categories.delete(category_id)
    return envelope("Category deleted successfully", {"category": category})


# Notification Routes

@router.get("/notifications")
def list_notifications(ctx: RequestContext = Depends(require_role()), repos: Repositories = Depends(get_repos)):
    notifications = repos.notifications.get_for_user(ctx.user_id)
    return envelope("Notifications fetched successfully", {"notifications": notifications})


@router.put("/notifications/read/{notification_id}")
def read_notification(notification_id: str, ctx: RequestContext = Depends(require_role()), repos: Repositories = Depends(get_repos)):
    notification = repos.notifications.mark_read(notification_id, ctx.user_id)
    return envelope("Notification marked as read", {"notification": notification})


# App

def create_app(database: Optional[Database] = None, converter=None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.APP_ENV, settings.LOG_FORMAT)

    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationMiddleware)

    repos = Repositories.from_database(database if database is not None else default_db)
    app.state.repos = repos
    app.state.converter = converter or CurrencyConverter(settings)
    app.state.cart_service = CartService(repos.carts, repos.products, app.state.converter)
    app.state.booking_service = BookingService(
        repos.users, repos.activities, repos.bookings, settings.LOYALTY_POINTS_PER_UNIT
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.error("Request failed", error=exc.message, kind=type(exc).__name__, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "data": []})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.error("Invalid request", errors=str(exc.errors()), path=request.url.path)
        return JSONResponse(status_code=422, content={"message": "Invalid request", "data": jsonable_encoder(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail, "data": []},
            headers=getattr(exc, "headers", None),
        )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
