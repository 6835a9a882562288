"""
Repositories: thin wrappers turning method calls into MongoDB queries.

Documents are returned as stored (ObjectId references, `_id` key); the HTTP
layer serializes them. References listed in `reference_fields` are stored as
ObjectIds, those listed in `populate_fields` are expanded into the referenced
documents when read.
"""
import copy
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, now
from errors import InsufficientFunds, NotFound, ValidationError
from security import hash_password
from validators import validate_id, validate_password


def _ref_slots(doc: Dict[str, Any], path: str) -> Iterator[Tuple[Any, Any]]:
    """Yield (container, key) pairs holding the reference found at `path`.

    `path` is either a field ("created_by"), a list field ("tags") or a field
    of the objects inside a list ("activities.activity").
    """
    head, _, tail = path.partition(".")
    value = doc.get(head)
    if tail:
        for item in value or []:
            if isinstance(item, dict) and item.get(tail) is not None:
                yield item, tail
    elif isinstance(value, list):
        for i in range(len(value)):
            yield value, i
    elif value is not None:
        yield doc, head


def populate(database: Database, docs: List[Dict[str, Any]], path: str, collection_name: str) -> List[Dict[str, Any]]:
    """Replace references at `path` by their documents, in place, with one query."""
    slots = [slot for doc in docs for slot in _ref_slots(doc, path)]
    ids = {container[key] for container, key in slots if isinstance(container[key], ObjectId)}
    if not ids:
        return docs
    found = {d["_id"]: d for d in database[collection_name].find({"_id": {"$in": list(ids)}})}
    for container, key in slots:
        if isinstance(container[key], ObjectId):
            container[key] = found.get(container[key])
    return docs


class MongoRepo:
    collection_name: str = ""
    entity: str = "document"
    reference_fields: Tuple[str, ...] = ()
    # (path, collection) pairs expanded on read
    populate_fields: Tuple[Tuple[str, str], ...] = ()
    projection: Optional[Dict[str, int]] = None

    def __init__(self, database: Database):
        self.db = database
        self.collection = database[self.collection_name]

    def _oid(self, id: Any) -> ObjectId:
        return validate_id(id, f"Invalid {self.entity} ID")

    def _not_found(self) -> NotFound:
        return NotFound(f"{self.entity.capitalize()} not found")

    def _encode(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = copy.deepcopy(data)
        for path in self.reference_fields:
            for container, key in list(_ref_slots(data, path)):
                container[key] = validate_id(container[key], f"Invalid reference in {path}")
        return data

    def _populate(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for path, collection_name in self.populate_fields:
            populate(self.db, docs, path, collection_name)
        return docs

    def get_all(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        docs = list(self.collection.find(filter or {}, self.projection))
        return self._populate(docs)

    def get_by_id(self, id: Any) -> Dict[str, Any]:
        oid = self._oid(id)
        doc = self.collection.find_one({"_id": oid}, self.projection)
        if not doc:
            raise self._not_found()
        return self._populate([doc])[0]

    def create(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        return create_document(self.db, self.collection_name, self._encode(entity))

    def update(self, id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        oid = self._oid(id)
        changes = {**self._encode(partial), "updated_at": now()}
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": changes},
            projection=self.projection,
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise self._not_found()
        return self._populate([doc])[0]

    def delete(self, id: Any) -> Dict[str, Any]:
        oid = self._oid(id)
        doc = self.collection.find_one_and_delete({"_id": oid}, projection=self.projection)
        if not doc:
            raise self._not_found()
        return doc

    def get_by_creator(self, creator_id: Any) -> List[Dict[str, Any]]:
        creator = validate_id(creator_id, "Invalid user ID")
        return self.get_all({"created_by": creator})


class UserRepo(MongoRepo):
    collection_name = "user"
    entity = "user"
    projection = {"password": 0}

    def create(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        validate_password(entity.get("password"))
        if self.collection.find_one({"$or": [{"username": entity["username"]}, {"email": entity["email"]}]}):
            raise ValidationError("Username or email already exists")
        doc = create_document(self.db, self.collection_name, {**entity, "password": hash_password(entity["password"])})
        doc.pop("password", None)
        return doc

    def update(self, id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        oid = self._oid(id)
        # null means "leave as is"
        partial = {k: v for k, v in partial.items() if v is not None}
        if "email" in partial and self.collection.find_one({"email": partial["email"], "_id": {"$ne": oid}}):
            raise ValidationError("Email already exists")
        # only re-hash when the password actually changes
        if "password" in partial:
            validate_password(partial["password"])
            partial["password"] = hash_password(partial["password"])
        return super().update(oid, partial)

    def debit_wallet(self, id: Any, amount: float, points: int = 0) -> Dict[str, Any]:
        """Take `amount` from the wallet and credit `points`, in one update that only
        matches while the balance covers the amount."""
        oid = self._oid(id)
        query: Dict[str, Any] = {"_id": oid}
        if amount > 0:
            query["wallet"] = {"$gte": amount}
        doc = self.collection.find_one_and_update(
            query,
            {"$inc": {"wallet": -amount, "loyalty_points": points}, "$set": {"updated_at": now()}},
            projection=self.projection,
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            return doc
        if not self.collection.find_one({"_id": oid}, {"_id": 1}):
            raise self._not_found()
        raise InsufficientFunds("Insufficient wallet balance")

    def redeem_points(self, id: Any, points: int, rate: float) -> Dict[str, Any]:
        """Turn `points` loyalty points into `points * rate` wallet credit."""
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise ValidationError("Points to redeem must be a positive integer")
        oid = self._oid(id)
        doc = self.collection.find_one_and_update(
            {"_id": oid, "loyalty_points": {"$gte": points}},
            {"$inc": {"loyalty_points": -points, "wallet": round(points * rate, 2)}, "$set": {"updated_at": now()}},
            projection=self.projection,
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            return doc
        if not self.collection.find_one({"_id": oid}, {"_id": 1}):
            raise self._not_found()
        raise ValidationError("Not enough loyalty points")

    def find_for_login(self, username: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"$or": [{"username": username}, {"email": username}]})

    def get_by_type(self, account_type: str) -> List[Dict[str, Any]]:
        return self.get_all({"account_type": account_type})

    def accept(self, id: Any) -> Dict[str, Any]:
        return self.update(id, {"accepted": True})


class ProductRepo(MongoRepo):
    collection_name = "product"
    entity = "product"
    reference_fields = ("seller",)

    def get_by_seller(self, seller_id: Any) -> List[Dict[str, Any]]:
        return self.get_all({"seller": validate_id(seller_id, "Invalid user ID")})

    def archive(self, id: Any, archived: bool = True) -> Dict[str, Any]:
        return self.update(id, {"archived": archived})


class MuseumRepo(MongoRepo):
    collection_name = "museum"
    entity = "museum"
    reference_fields = ("tags", "created_by")
    populate_fields = (("tags", "tag"),)

    def get_by_tags(self, tag_ids: List[str]) -> List[Dict[str, Any]]:
        ids = [validate_id(t, "Invalid tag ID") for t in tag_ids]
        return self.get_all({"tags": {"$in": ids}})


class ActivityRepo(MongoRepo):
    collection_name = "activity"
    entity = "activity"
    reference_fields = ("tags", "created_by")
    populate_fields = (("tags", "tag"),)

    def flag(self, id: Any) -> Dict[str, Any]:
        return self.update(id, {"flagged": True})

    def set_active(self, id: Any, active: bool) -> Dict[str, Any]:
        return self.update(id, {"active": active})


class ItineraryRepo(MongoRepo):
    collection_name = "itinerary"
    entity = "itinerary"
    reference_fields = ("tags", "created_by", "activities.activity")
    populate_fields = (("tags", "tag"), ("activities.activity", "activity"))

    def flag(self, id: Any) -> Dict[str, Any]:
        return self.update(id, {"flagged": True})

    def set_active(self, id: Any, active: bool) -> Dict[str, Any]:
        return self.update(id, {"active": active})

    def get_creator(self, id: Any) -> Optional[ObjectId]:
        doc = self.collection.find_one({"_id": self._oid(id)}, {"created_by": 1})
        if not doc:
            raise self._not_found()
        return doc.get("created_by")


class TagRepo(MongoRepo):
    collection_name = "tag"
    entity = "tag"


class CategoryRepo(MongoRepo):
    collection_name = "category"
    entity = "category"

    def create(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        if self.collection.find_one({"name": entity["name"]}):
            raise ValidationError("Category already exists")
        return super().create(entity)

    def update(self, id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        oid = self._oid(id)
        if partial.get("name") and self.collection.find_one({"name": partial["name"], "_id": {"$ne": oid}}):
            raise ValidationError("Category already exists")
        return super().update(oid, partial)


class BookingRepo(MongoRepo):
    collection_name = "booking"
    entity = "booking"
    reference_fields = ("user", "activity")
    populate_fields = (("activity", "activity"),)

    def get_for_user(self, user_id: Any) -> List[Dict[str, Any]]:
        user = validate_id(user_id, "Invalid user ID")
        return self._populate(list(self.collection.find({"user": user}).sort("created_at", DESCENDING)))

    def has_confirmed(self, user_id: Any, activity_id: Any) -> bool:
        query = {
            "user": validate_id(user_id, "Invalid user ID"),
            "activity": validate_id(activity_id, "Invalid activity ID"),
            "status": "confirmed",
        }
        return self.collection.find_one(query, {"_id": 1}) is not None


class NotificationRepo(MongoRepo):
    collection_name = "notification"
    entity = "notification"
    reference_fields = ("user",)

    def get_for_user(self, user_id: Any) -> List[Dict[str, Any]]:
        user = validate_id(user_id, "Invalid user ID")
        return list(self.collection.find({"user": user}).sort("created_at", DESCENDING))

    def mark_read(self, id: Any, user_id: Any) -> Dict[str, Any]:
        doc = self.collection.find_one_and_update(
            {"_id": self._oid(id), "user": validate_id(user_id, "Invalid user ID")},
            {"$set": {"read": True, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise self._not_found()
        return doc


class CartRepo:
    """Cart lines embedded in the user document as [{product, quantity}]."""

    def __init__(self, database: Database):
        self.db = database
        self.users = database["user"]

    def _user_oid(self, user_id: Any) -> ObjectId:
        return validate_id(user_id, "Invalid user ID")

    def get_cart_lines(self, user_id: Any) -> List[Dict[str, Any]]:
        doc = self.users.find_one({"_id": self._user_oid(user_id)}, {"cart": 1})
        if not doc:
            raise NotFound("User not found")
        return doc.get("cart") or []

    def get_user_cart(self, user_id: Any) -> List[Dict[str, Any]]:
        holder = {"cart": self.get_cart_lines(user_id)}
        populate(self.db, [holder], "cart.product", "product")
        return holder["cart"]

    def set_quantity(self, user_id: Any, product_id: ObjectId, quantity: int) -> Tuple[List[Dict[str, Any]], bool]:
        """Push a new line or overwrite the existing one. Returns (lines, created).

        The push only matches while no line holds the product, so overlapping
        requests can never leave two lines for it.
        """
        uid = self._user_oid(user_id)
        pushed = self.users.update_one(
            {"_id": uid, "cart.product": {"$ne": product_id}},
            {"$push": {"cart": {"product": product_id, "quantity": quantity}}, "$set": {"updated_at": now()}},
        )
        if not pushed.matched_count:
            updated = self.users.update_one(
                {"_id": uid, "cart.product": product_id},
                {"$set": {"cart.$.quantity": quantity, "updated_at": now()}},
            )
            if not updated.matched_count:
                raise NotFound("User not found")
        return self.get_cart_lines(uid), bool(pushed.matched_count)

    def remove_product(self, user_id: Any, product_id: ObjectId) -> List[Dict[str, Any]]:
        self.users.update_one(
            {"_id": self._user_oid(user_id)},
            {"$pull": {"cart": {"product": product_id}}, "$set": {"updated_at": now()}},
        )
        return self.get_cart_lines(user_id)
