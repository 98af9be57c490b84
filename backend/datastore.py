"""Data-access facade for the storefront.

``Datastore`` is the capability every route talks to. ``MongoStore`` is the
server implementation on top of a pymongo database; ``StaticStore`` keeps a
small fallback catalog in memory for contexts without a database. The
implementation is picked once by ``create_store`` when the app starts.
"""
import copy
import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import user_identity
from documents import (
    ADDRESS_FIELDS,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    CarouselImage,
    Category,
    Order,
    Product,
    Review,
    User,
    carousel_image_from_document,
    category_from_document,
    normalize_role,
    optional_text,
    order_from_document,
    product_from_document,
    review_from_document,
    safe_float,
    safe_positive_int,
    shipping_address_from_document,
    stringify_id,
    user_from_document,
)

logger = logging.getLogger(__name__)

FEATURED_SETTINGS_ID = "featured_products"
PRODUCT_FIELDS = ("name", "description", "price", "category", "image", "image_cid", "stock")
PRODUCT_FIELD_ALIASES = {"image_cid": ("image_cid", "imageCid")}
CATEGORY_FIELDS = ("name", "slug", "description", "is_active")
USER_FIELDS = ("name", "email", "role", "external_id")


class DatastoreError(RuntimeError):
    """The backing database could not be reached or rejected the operation."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    for value in values or []:
        object_id = normalize_object_id_value(value)
        if object_id is not None:
            normalized_ids.append(object_id)
    return normalized_ids


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def slugify(value: Optional[str]) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", condensed).encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    return slug or uuid4().hex


def _pick(data: Dict, key: str, aliases=None):
    for alias in (aliases or {}).get(key, (key,)):
        if alias in data:
            return True, data.get(alias)
    return False, None


def product_fields(data: Optional[Dict], partial: bool = False) -> Dict:
    data = data or {}
    fields: Dict[str, object] = {}
    for key in PRODUCT_FIELDS:
        present, value = _pick(data, key, PRODUCT_FIELD_ALIASES)
        if partial and not present:
            continue
        if key == "price":
            fields[key] = round(max(0.0, safe_float(value, 0.0)), 2)
        elif key == "stock":
            fields[key] = safe_positive_int(value, 0)
        elif key == "image_cid":
            fields[key] = optional_text(value)
        else:
            fields[key] = str(value or "").strip()
    return fields


def category_fields(data: Optional[Dict], partial: bool = False) -> Dict:
    data = data or {}
    aliases = {"is_active": ("is_active", "isActive")}
    fields: Dict[str, object] = {}
    for key in CATEGORY_FIELDS:
        present, value = _pick(data, key, aliases)
        if partial and not present:
            continue
        if key == "is_active":
            fields[key] = bool(value) if present else True
        elif key == "name":
            fields[key] = " ".join(str(value or "").split())
        else:
            fields[key] = str(value or "").strip()
    if not partial and not fields.get("slug"):
        fields["slug"] = slugify(fields.get("name"))
    elif "slug" in fields:
        fields["slug"] = slugify(fields["slug"])
    return fields


def user_fields(data: Optional[Dict], partial: bool = False) -> Dict:
    data = data or {}
    aliases = {"external_id": ("external_id", "externalId", "clerkId")}
    fields: Dict[str, object] = {}
    for key in USER_FIELDS:
        present, value = _pick(data, key, aliases)
        if partial and not present:
            continue
        if key == "email":
            fields[key] = normalize_email(value)
        elif key == "role":
            fields[key] = normalize_role(value)
        elif key == "external_id":
            fields[key] = optional_text(value)
        else:
            fields[key] = str(value or "").strip()
    return fields


def build_order_document(data: Optional[Dict]) -> Dict:
    data = data or {}
    user_id = stringify_id(
        data.get("user_id") if data.get("user_id") is not None else data.get("userId")
    )
    if not user_id:
        raise ValueError("Order must have a user id.")

    raw_lines = data.get("products")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValueError("Order must have at least one product.")

    lines: List[Dict[str, object]] = []
    for raw_line in raw_lines:
        if not isinstance(raw_line, dict):
            raise ValueError("Order lines must be objects with a product id.")
        product_id = stringify_id(
            raw_line.get("product_id")
            if raw_line.get("product_id") is not None
            else raw_line.get("productId")
        )
        if not product_id:
            raise ValueError("Every order line needs a product id.")
        lines.append(
            {
                "product_id": product_id,
                "quantity": safe_positive_int(raw_line.get("quantity"), 1) or 1,
            }
        )

    status = str(data.get("status") or "pending").strip().lower()
    if status not in ORDER_STATUSES:
        raise ValueError(f"Unknown order status {status!r}.")

    payment_method = str(
        data.get("payment_method") or data.get("paymentMethod") or "cash_on_delivery"
    ).strip()
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Unsupported payment method {payment_method!r}.")

    payment_status = str(
        data.get("payment_status") or data.get("paymentStatus") or "pending"
    ).strip()
    if payment_status not in PAYMENT_STATUSES:
        raise ValueError(f"Unknown payment status {payment_status!r}.")

    document: Dict[str, object] = {
        "user_id": user_id,
        "products": lines,
        "status": status,
        "total": round(max(0.0, safe_float(data.get("total"), 0.0)), 2),
        "created_at": utcnow(),
        "payment_method": payment_method,
        "payment_status": payment_status,
    }

    address = shipping_address_from_document(
        data.get("shipping_address") or data.get("shippingAddress")
    )
    if address is not None:
        document["shipping_address"] = {
            field_name: getattr(address, field_name) for field_name in ADDRESS_FIELDS
        }

    payment_details = data.get("payment_details") or data.get("paymentDetails")
    if isinstance(payment_details, dict):
        document["payment_details"] = payment_details

    return document


def _validated_status(status) -> str:
    normalized = str(status or "").strip().lower()
    if normalized not in ORDER_STATUSES:
        raise ValueError(f"Unknown order status {status!r}.")
    return normalized


def _validated_rating(rating) -> int:
    value = safe_positive_int(rating, 0)
    if value < 1 or value > 5:
        raise ValueError("Rating must be a number between 1 and 5.")
    return value


def _convert_all(documents: Iterable[Dict], converter) -> List:
    records = []
    for document in documents:
        record = converter(document)
        if record is not None:
            records.append(record)
    return records


class Datastore(ABC):
    backend_name = ""

    # Products
    @abstractmethod
    def get_products(self, category: Optional[str] = None) -> List[Product]:
        ...

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    def add_product(self, data: Dict) -> Product:
        ...

    @abstractmethod
    def update_product(self, product_id: str, changes: Dict) -> Optional[Product]:
        ...

    @abstractmethod
    def delete_product(self, product_id: str) -> Optional[Product]:
        ...

    # Orders
    @abstractmethod
    def get_orders(self) -> List[Order]:
        ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def find_orders_by_user_id(self, user_id: str) -> List[Order]:
        ...

    @abstractmethod
    def create_order(self, data: Dict) -> Order:
        ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        ...

    @abstractmethod
    def delete_order(self, order_id: str) -> bool:
        ...

    # Users
    @abstractmethod
    def get_users(self) -> List[User]:
        ...

    @abstractmethod
    def get_users_by_local_ids(self, user_ids: Iterable[str]) -> List[User]:
        ...

    @abstractmethod
    def find_users_by_external_ids(self, external_ids: Iterable[str]) -> List[User]:
        ...

    @abstractmethod
    def get_user_credentials(self, email: str) -> Tuple[Optional[User], str]:
        ...

    @abstractmethod
    def create_user(self, data: Dict, password_hash: str = "") -> User:
        ...

    @abstractmethod
    def update_user(self, user_id: str, changes: Dict) -> Optional[User]:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> bool:
        ...

    # Categories
    @abstractmethod
    def get_categories(self) -> List[Category]:
        ...

    @abstractmethod
    def get_category(self, category_id: str) -> Optional[Category]:
        ...

    @abstractmethod
    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        ...

    @abstractmethod
    def create_category(self, data: Dict) -> Category:
        ...

    @abstractmethod
    def update_category(self, category_id: str, changes: Dict) -> Optional[Category]:
        ...

    @abstractmethod
    def delete_category(self, category_id: str) -> bool:
        ...

    # Reviews
    @abstractmethod
    def get_product_reviews(self, product_id: str) -> List[Review]:
        ...

    @abstractmethod
    def upsert_review(
        self,
        product_id: str,
        user_id: str,
        user_name: str,
        rating: int,
        comment: str,
        verified: bool = True,
    ) -> Review:
        ...

    # Settings
    @abstractmethod
    def get_featured_product_ids(self) -> List[str]:
        ...

    @abstractmethod
    def set_featured_product_ids(
        self, product_ids: List[str], updated_by: Optional[str] = None
    ) -> List[str]:
        ...

    # Carousel
    @abstractmethod
    def get_carousel_images(self) -> List[CarouselImage]:
        ...

    @abstractmethod
    def add_carousel_image(self, data: Dict) -> CarouselImage:
        ...

    @abstractmethod
    def delete_carousel_image(self, image_id: str) -> Optional[CarouselImage]:
        ...

    def get_user_by_local_id(self, user_id: str) -> Optional[User]:
        matches = self.get_users_by_local_ids([user_id])
        return matches[0] if matches else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        user, _ = self.get_user_credentials(email)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return user_identity.resolve_user(self, user_id)

    def get_user_orders(self, user_id: str) -> List[Order]:
        return user_identity.get_user_orders(self, user_id)


def _guard(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except PyMongoError as exc:
            raise DatastoreError(f"{method.__name__} failed: {exc}") from exc

    return wrapper


class MongoStore(Datastore):
    backend_name = "mongo"

    def __init__(self, db):
        if db is None:
            raise ValueError("MongoStore needs a database; check MONGO_URI.")
        self.db = db
        self.products = db.products
        self.orders = db.orders
        self.users = db.users
        self.categories = db.categories
        self.reviews = db.reviews
        self.settings = db.settings
        self.carousel_images = db.carousel_images

    def ensure_indexes(self):
        try:
            self.orders.create_index("user_id")
            self.users.create_index("email")
            self.users.create_index("external_id")
            self.categories.create_index("slug", unique=True)
            self.reviews.create_index([("product_id", 1), ("user_id", 1)], unique=True)
        except PyMongoError as exc:
            logger.warning("Unable to ensure indexes: %s", exc)

    # Products
    @_guard
    def get_products(self, category: Optional[str] = None) -> List[Product]:
        query: Dict[str, object] = {}
        if category:
            query["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
        documents = list(self.products.find(query).sort("_id", 1))
        logger.debug("Found %d products in MongoDB", len(documents))
        return _convert_all(documents, product_from_document)

    @_guard
    def get_product(self, product_id: str) -> Optional[Product]:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None
        return product_from_document(self.products.find_one({"_id": object_id}))

    @_guard
    def add_product(self, data: Dict) -> Product:
        document = product_fields(data)
        if not document["name"]:
            raise ValueError("A product name is required.")
        timestamp = utcnow()
        document.update({"created_at": timestamp, "updated_at": timestamp})
        result = self.products.insert_one(document)
        document["_id"] = result.inserted_id
        return product_from_document(document)

    @_guard
    def update_product(self, product_id: str, changes: Dict) -> Optional[Product]:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None
        update = product_fields(changes, partial=True)
        update["updated_at"] = utcnow()
        document = self.products.find_one_and_update(
            {"_id": object_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return product_from_document(document)

    @_guard
    def delete_product(self, product_id: str) -> Optional[Product]:
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None
        return product_from_document(self.products.find_one_and_delete({"_id": object_id}))

    # Orders
    @_guard
    def get_orders(self) -> List[Order]:
        documents = list(self.orders.find().sort("_id", 1))
        logger.debug("Found %d orders in MongoDB", len(documents))
        return _convert_all(documents, order_from_document)

    @_guard
    def get_order(self, order_id: str) -> Optional[Order]:
        object_id = normalize_object_id_value(order_id)
        if object_id is None:
            return None
        return order_from_document(self.orders.find_one({"_id": object_id}))

    @_guard
    def find_orders_by_user_id(self, user_id: str) -> List[Order]:
        identifier = str(user_id or "").strip()
        if not identifier:
            return []
        query = {"$or": [{"user_id": identifier}, {"userId": identifier}]}
        documents = list(self.orders.find(query).sort("_id", 1))
        logger.debug("Found %d orders stored under %s", len(documents), identifier)
        return _convert_all(documents, order_from_document)

    @_guard
    def create_order(self, data: Dict) -> Order:
        document = build_order_document(data)
        result = self.orders.insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Created order %s for %s", result.inserted_id, document["user_id"])
        return order_from_document(document)

    @_guard
    def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        normalized_status = _validated_status(status)
        object_id = normalize_object_id_value(order_id)
        if object_id is None:
            return None
        document = self.orders.find_one_and_update(
            {"_id": object_id},
            {"$set": {"status": normalized_status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return order_from_document(document)

    @_guard
    def delete_order(self, order_id: str) -> bool:
        object_id = normalize_object_id_value(order_id)
        if object_id is None:
            return False
        return self.orders.delete_one({"_id": object_id}).deleted_count > 0

    # Users
    @_guard
    def get_users(self) -> List[User]:
        return _convert_all(self.users.find().sort("_id", 1), user_from_document)

    @_guard
    def get_users_by_local_ids(self, user_ids: Iterable[str]) -> List[User]:
        object_ids = normalize_object_id_list(user_ids)
        if not object_ids:
            return []
        return _convert_all(
            self.users.find({"_id": {"$in": object_ids}}), user_from_document
        )

    @_guard
    def find_users_by_external_ids(self, external_ids: Iterable[str]) -> List[User]:
        identifiers = [str(value).strip() for value in external_ids or [] if value]
        if not identifiers:
            return []
        query = {
            "$or": [
                {"external_id": {"$in": identifiers}},
                {"clerkId": {"$in": identifiers}},
            ]
        }
        return _convert_all(self.users.find(query).sort("_id", 1), user_from_document)

    @_guard
    def get_user_credentials(self, email: str) -> Tuple[Optional[User], str]:
        normalized = normalize_email(email)
        if not normalized:
            return None, ""
        document = self.users.find_one({"email": normalized})
        if not document:
            return None, ""
        return user_from_document(document), str(document.get("password_hash") or "")

    @_guard
    def create_user(self, data: Dict, password_hash: str = "") -> User:
        document = user_fields(data)
        if not document["email"]:
            raise ValueError("An email address is required.")
        if self.users.find_one({"email": document["email"]}):
            raise ValueError("That email address is already registered.")
        if document["external_id"] and self.find_users_by_external_ids(
            [document["external_id"]]
        ):
            raise ValueError("That provider id is already linked to another user.")
        document.update(
            {"password_hash": password_hash, "created_at": utcnow(), "updated_at": utcnow()}
        )
        result = self.users.insert_one(document)
        document["_id"] = result.inserted_id
        return user_from_document(document)

    @_guard
    def update_user(self, user_id: str, changes: Dict) -> Optional[User]:
        target = self.get_user(user_id)
        object_id = normalize_object_id_value(target.id) if target else None
        if object_id is None:
            return None
        update = user_fields(changes, partial=True)
        update["updated_at"] = utcnow()
        document = self.users.find_one_and_update(
            {"_id": object_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return user_from_document(document)

    @_guard
    def delete_user(self, user_id: str) -> bool:
        target = self.get_user(user_id)
        object_id = normalize_object_id_value(target.id) if target else None
        if object_id is None:
            return False
        return self.users.delete_one({"_id": object_id}).deleted_count > 0

    # Categories
    @_guard
    def get_categories(self) -> List[Category]:
        return _convert_all(
            self.categories.find().sort("name", 1), category_from_document
        )

    @_guard
    def get_category(self, category_id: str) -> Optional[Category]:
        object_id = normalize_object_id_value(category_id)
        if object_id is None:
            return None
        return category_from_document(self.categories.find_one({"_id": object_id}))

    @_guard
    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        return category_from_document(
            self.categories.find_one({"slug": str(slug or "").strip().lower()})
        )

    @_guard
    def create_category(self, data: Dict) -> Category:
        document = category_fields(data)
        if len(document["name"]) < 2:
            raise ValueError("Category names must be at least two characters long.")
        if self.categories.find_one({"slug": document["slug"]}):
            raise ValueError("A category with that slug already exists.")
        timestamp = utcnow()
        document.update({"created_at": timestamp, "updated_at": timestamp})
        result = self.categories.insert_one(document)
        document["_id"] = result.inserted_id
        return category_from_document(document)

    @_guard
    def update_category(self, category_id: str, changes: Dict) -> Optional[Category]:
        object_id = normalize_object_id_value(category_id)
        if object_id is None:
            return None
        update = category_fields(changes, partial=True)
        if "slug" in update and self.categories.find_one(
            {"slug": update["slug"], "_id": {"$ne": object_id}}
        ):
            raise ValueError("A category with that slug already exists.")
        update["updated_at"] = utcnow()
        document = self.categories.find_one_and_update(
            {"_id": object_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return category_from_document(document)

    @_guard
    def delete_category(self, category_id: str) -> bool:
        object_id = normalize_object_id_value(category_id)
        if object_id is None:
            return False
        return self.categories.delete_one({"_id": object_id}).deleted_count > 0

    # Reviews
    @_guard
    def get_product_reviews(self, product_id: str) -> List[Review]:
        cursor = self.reviews.find({"product_id": str(product_id)}).sort("created_at", -1)
        return _convert_all(cursor, review_from_document)

    @_guard
    def upsert_review(
        self,
        product_id: str,
        user_id: str,
        user_name: str,
        rating: int,
        comment: str,
        verified: bool = True,
    ) -> Review:
        selector = {"product_id": str(product_id), "user_id": str(user_id)}
        self.reviews.update_one(
            selector,
            {
                "$set": {
                    "user_name": str(user_name or "").strip() or "Anonymous",
                    "rating": _validated_rating(rating),
                    "comment": str(comment or "").strip(),
                    "verified": bool(verified),
                    "updated_at": utcnow(),
                },
                "$setOnInsert": {"created_at": utcnow()},
            },
            upsert=True,
        )
        return review_from_document(self.reviews.find_one(selector))

    # Settings
    @_guard
    def get_featured_product_ids(self) -> List[str]:
        document = self.settings.find_one({"_id": FEATURED_SETTINGS_ID}) or {}
        raw_ids = document.get("product_ids") or []
        return [stringify_id(value) for value in raw_ids if stringify_id(value)]

    @_guard
    def set_featured_product_ids(
        self, product_ids: List[str], updated_by: Optional[str] = None
    ) -> List[str]:
        normalized_ids: List[str] = []
        for value in product_ids:
            product_id = stringify_id(value)
            if product_id and product_id not in normalized_ids:
                normalized_ids.append(product_id)
        self.settings.update_one(
            {"_id": FEATURED_SETTINGS_ID},
            {
                "$set": {
                    "product_ids": normalized_ids,
                    "updated_at": utcnow(),
                    "updated_by": updated_by,
                }
            },
            upsert=True,
        )
        return normalized_ids

    # Carousel
    @_guard
    def get_carousel_images(self) -> List[CarouselImage]:
        cursor = self.carousel_images.find().sort([("position", 1), ("_id", 1)])
        return _convert_all(cursor, carousel_image_from_document)

    @_guard
    def add_carousel_image(self, data: Dict) -> CarouselImage:
        document = _carousel_document(data)
        if document["position"] is None:
            document["position"] = self.carousel_images.count_documents({})
        result = self.carousel_images.insert_one(document)
        document["_id"] = result.inserted_id
        return carousel_image_from_document(document)

    @_guard
    def delete_carousel_image(self, image_id: str) -> Optional[CarouselImage]:
        object_id = normalize_object_id_value(image_id)
        if object_id is None:
            return None
        return carousel_image_from_document(
            self.carousel_images.find_one_and_delete({"_id": object_id})
        )


def _carousel_document(data: Optional[Dict]) -> Dict:
    data = data or {}
    image_url = str(data.get("image_url") or data.get("imageUrl") or "").strip()
    if not image_url:
        raise ValueError("A carousel image needs an image URL.")
    raw_position = data.get("position")
    return {
        "image_url": image_url,
        "image_cid": optional_text(data.get("image_cid") or data.get("imageCid")),
        "title": str(data.get("title") or "").strip(),
        "link": str(data.get("link") or "").strip(),
        "position": safe_positive_int(raw_position, 0) if raw_position is not None else None,
        "created_at": utcnow(),
    }


FALLBACK_PRODUCTS = [
    {
        "id": "fallback-1",
        "name": "Sample Product",
        "description": "A sample product when database is unavailable.",
        "price": 19.99,
        "category": "Sample",
        "image": "/placeholder.svg?height=300&width=300",
        "stock": 10,
    }
]

FALLBACK_USERS = [
    {"id": "fallback-1", "name": "Admin User", "email": "admin@example.com", "role": "admin"},
    {
        "id": "fallback-2",
        "name": "Customer User",
        "email": "customer@example.com",
        "role": "customer",
    },
]

FALLBACK_ORDERS = [
    {
        "id": "fallback-1",
        "user_id": "fallback-2",
        "products": [{"product_id": "fallback-1", "quantity": 1}],
        "status": "delivered",
        "total": 19.99,
    }
]


class StaticStore(Datastore):
    """In-memory store seeded with the fallback catalog.

    Writes live only as long as the process. Local user ids here are plain
    strings, so any identifier without the provider prefix counts as local.
    """

    backend_name = "static"

    def __init__(
        self,
        products: Optional[List[Dict]] = None,
        users: Optional[List[Dict]] = None,
        orders: Optional[List[Dict]] = None,
        categories: Optional[List[Dict]] = None,
    ):
        self._products = self._index(FALLBACK_PRODUCTS if products is None else products)
        self._users = self._index(FALLBACK_USERS if users is None else users)
        self._orders = self._index(FALLBACK_ORDERS if orders is None else orders)
        self._categories = self._index(categories or [])
        self._reviews: Dict[str, Dict] = {}
        self._carousel: Dict[str, Dict] = {}
        self._featured_ids: List[str] = []

    @staticmethod
    def _index(documents: List[Dict]) -> Dict[str, Dict]:
        indexed: Dict[str, Dict] = {}
        for document in copy.deepcopy(documents):
            document_id = stringify_id(document.get("id")) or f"static-{uuid4().hex[:12]}"
            document["id"] = document_id
            indexed[document_id] = document
        return indexed

    @staticmethod
    def _new_id() -> str:
        return f"static-{uuid4().hex[:12]}"

    # Products
    def get_products(self, category: Optional[str] = None) -> List[Product]:
        documents = list(self._products.values())
        if category:
            wanted = category.strip().lower()
            documents = [
                document
                for document in documents
                if str(document.get("category") or "").strip().lower() == wanted
            ]
        return _convert_all(documents, product_from_document)

    def get_product(self, product_id: str) -> Optional[Product]:
        return product_from_document(self._products.get(stringify_id(product_id)))

    def add_product(self, data: Dict) -> Product:
        document = product_fields(data)
        if not document["name"]:
            raise ValueError("A product name is required.")
        document["id"] = self._new_id()
        self._products[document["id"]] = document
        return product_from_document(document)

    def update_product(self, product_id: str, changes: Dict) -> Optional[Product]:
        document = self._products.get(stringify_id(product_id))
        if document is None:
            return None
        document.update(product_fields(changes, partial=True))
        return product_from_document(document)

    def delete_product(self, product_id: str) -> Optional[Product]:
        return product_from_document(self._products.pop(stringify_id(product_id), None))

    # Orders
    def get_orders(self) -> List[Order]:
        return _convert_all(self._orders.values(), order_from_document)

    def get_order(self, order_id: str) -> Optional[Order]:
        return order_from_document(self._orders.get(stringify_id(order_id)))

    def find_orders_by_user_id(self, user_id: str) -> List[Order]:
        identifier = str(user_id or "").strip()
        if not identifier:
            return []
        matches = [
            document
            for document in self._orders.values()
            if stringify_id(document.get("user_id", document.get("userId"))) == identifier
        ]
        return _convert_all(matches, order_from_document)

    def create_order(self, data: Dict) -> Order:
        document = build_order_document(data)
        document["id"] = self._new_id()
        self._orders[document["id"]] = document
        return order_from_document(document)

    def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        normalized_status = _validated_status(status)
        document = self._orders.get(stringify_id(order_id))
        if document is None:
            return None
        document["status"] = normalized_status
        return order_from_document(document)

    def delete_order(self, order_id: str) -> bool:
        return self._orders.pop(stringify_id(order_id), None) is not None

    # Users
    def get_users(self) -> List[User]:
        return _convert_all(self._users.values(), user_from_document)

    def get_users_by_local_ids(self, user_ids: Iterable[str]) -> List[User]:
        documents = []
        for user_id in user_ids or []:
            document = self._users.get(stringify_id(user_id))
            if document is not None and document not in documents:
                documents.append(document)
        return _convert_all(documents, user_from_document)

    def find_users_by_external_ids(self, external_ids: Iterable[str]) -> List[User]:
        wanted = {str(value).strip() for value in external_ids or [] if value}
        matches = [
            document
            for document in self._users.values()
            if optional_text(document.get("external_id") or document.get("clerkId"))
            in wanted
        ]
        return _convert_all(matches, user_from_document)

    def get_user_credentials(self, email: str) -> Tuple[Optional[User], str]:
        normalized = normalize_email(email)
        for document in self._users.values():
            if normalize_email(document.get("email")) == normalized and normalized:
                return user_from_document(document), str(document.get("password_hash") or "")
        return None, ""

    def create_user(self, data: Dict, password_hash: str = "") -> User:
        document = user_fields(data)
        if not document["email"]:
            raise ValueError("An email address is required.")
        if self.get_user_by_email(document["email"]) is not None:
            raise ValueError("That email address is already registered.")
        if document["external_id"] and self.find_users_by_external_ids(
            [document["external_id"]]
        ):
            raise ValueError("That provider id is already linked to another user.")
        document["id"] = self._new_id()
        document["password_hash"] = password_hash
        self._users[document["id"]] = document
        return user_from_document(document)

    def update_user(self, user_id: str, changes: Dict) -> Optional[User]:
        target = self.get_user(user_id)
        if target is None:
            return None
        document = self._users[target.id]
        document.update(user_fields(changes, partial=True))
        return user_from_document(document)

    def delete_user(self, user_id: str) -> bool:
        target = self.get_user(user_id)
        if target is None:
            return False
        return self._users.pop(target.id, None) is not None

    # Categories
    def get_categories(self) -> List[Category]:
        documents = sorted(self._categories.values(), key=lambda d: str(d.get("name") or ""))
        return _convert_all(documents, category_from_document)

    def get_category(self, category_id: str) -> Optional[Category]:
        return category_from_document(self._categories.get(stringify_id(category_id)))

    def get_category_by_slug(self, slug: str) -> Optional[Category]:
        wanted = str(slug or "").strip().lower()
        for document in self._categories.values():
            if document.get("slug") == wanted:
                return category_from_document(document)
        return None

    def create_category(self, data: Dict) -> Category:
        document = category_fields(data)
        if len(document["name"]) < 2:
            raise ValueError("Category names must be at least two characters long.")
        if self.get_category_by_slug(document["slug"]) is not None:
            raise ValueError("A category with that slug already exists.")
        timestamp = utcnow()
        document.update({"id": self._new_id(), "created_at": timestamp, "updated_at": timestamp})
        self._categories[document["id"]] = document
        return category_from_document(document)

    def update_category(self, category_id: str, changes: Dict) -> Optional[Category]:
        document = self._categories.get(stringify_id(category_id))
        if document is None:
            return None
        update = category_fields(changes, partial=True)
        existing = self.get_category_by_slug(update["slug"]) if "slug" in update else None
        if existing is not None and existing.id != document["id"]:
            raise ValueError("A category with that slug already exists.")
        document.update(update)
        document["updated_at"] = utcnow()
        return category_from_document(document)

    def delete_category(self, category_id: str) -> bool:
        return self._categories.pop(stringify_id(category_id), None) is not None

    # Reviews
    def get_product_reviews(self, product_id: str) -> List[Review]:
        matches = [
            document
            for document in self._reviews.values()
            if document.get("product_id") == str(product_id)
        ]
        matches.sort(key=lambda document: document["created_at"], reverse=True)
        return _convert_all(matches, review_from_document)

    def upsert_review(
        self,
        product_id: str,
        user_id: str,
        user_name: str,
        rating: int,
        comment: str,
        verified: bool = True,
    ) -> Review:
        key = f"{product_id}:{user_id}"
        document = self._reviews.get(key)
        if document is None:
            document = {
                "id": self._new_id(),
                "product_id": str(product_id),
                "user_id": str(user_id),
                "created_at": utcnow(),
            }
        document.update(
            {
                "user_name": str(user_name or "").strip() or "Anonymous",
                "rating": _validated_rating(rating),
                "comment": str(comment or "").strip(),
                "verified": bool(verified),
            }
        )
        self._reviews[key] = document
        return review_from_document(document)

    # Settings
    def get_featured_product_ids(self) -> List[str]:
        return list(self._featured_ids)

    def set_featured_product_ids(
        self, product_ids: List[str], updated_by: Optional[str] = None
    ) -> List[str]:
        normalized_ids: List[str] = []
        for value in product_ids:
            product_id = stringify_id(value)
            if product_id and product_id not in normalized_ids:
                normalized_ids.append(product_id)
        self._featured_ids = normalized_ids
        return list(normalized_ids)

    # Carousel
    def get_carousel_images(self) -> List[CarouselImage]:
        documents = sorted(
            self._carousel.values(), key=lambda document: document["position"]
        )
        return _convert_all(documents, carousel_image_from_document)

    def add_carousel_image(self, data: Dict) -> CarouselImage:
        document = _carousel_document(data)
        if document["position"] is None:
            document["position"] = len(self._carousel)
        document["id"] = self._new_id()
        self._carousel[document["id"]] = document
        return carousel_image_from_document(document)

    def delete_carousel_image(self, image_id: str) -> Optional[CarouselImage]:
        return carousel_image_from_document(
            self._carousel.pop(stringify_id(image_id), None)
        )


def create_store(backend: str, db=None) -> Datastore:
    normalized = str(backend or "").strip().lower()
    if normalized == "mongo":
        store = MongoStore(db)
        store.ensure_indexes()
        return store
    if normalized == "static":
        return StaticStore()
    raise ValueError(f"Unknown data backend {backend!r}; use 'mongo' or 'static'.")
