"""Strict records for the storefront and the conversions that build them.

Documents coming out of MongoDB (or the static fallback data) are loosely
shaped: fields go missing, ids are ``ObjectId`` instances, numbers arrive as
strings. Everything is mapped through the ``*_from_document`` helpers below so
the rest of the code only ever sees fully populated records.
"""
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bson import ObjectId

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered")
PAYMENT_METHODS = ("paypal", "cash_on_delivery")
PAYMENT_STATUSES = ("pending", "completed", "failed")
USER_ROLES = ("admin", "customer")

ADDRESS_FIELDS = (
    "full_name",
    "street_address",
    "city",
    "state",
    "postal_code",
    "country",
    "phone",
)
ADDRESS_FIELD_ALIASES = {
    "full_name": ("full_name", "fullName", "name"),
    "street_address": ("street_address", "streetAddress", "line1", "street"),
    "city": ("city", "town"),
    "state": ("state", "region", "province"),
    "postal_code": ("postal_code", "postalCode", "postcode", "zip"),
    "country": ("country",),
    "phone": ("phone", "phone_number", "phoneNumber"),
}


@dataclass
class Product:
    id: str
    name: str = ""
    description: str = ""
    price: float = 0.0
    category: str = ""
    image: str = ""
    image_cid: Optional[str] = None
    stock: int = 0


@dataclass
class OrderLine:
    product_id: str
    quantity: int = 0


@dataclass
class ShippingAddress:
    full_name: str = ""
    street_address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    phone: str = ""


@dataclass
class Order:
    id: str
    user_id: str = ""
    products: List[OrderLine] = field(default_factory=list)
    status: str = "pending"
    total: float = 0.0
    created_at: Optional[datetime] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    payment_status: Optional[str] = None
    payment_details: Optional[Dict] = None


@dataclass
class User:
    id: str
    name: str = ""
    email: str = ""
    role: str = "customer"
    external_id: Optional[str] = None


@dataclass
class Category:
    id: str
    name: str = ""
    slug: str = ""
    description: str = ""
    is_active: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Review:
    id: str
    product_id: str = ""
    user_id: str = ""
    user_name: str = ""
    rating: int = 0
    comment: str = ""
    verified: bool = False
    created_at: Optional[datetime] = None


@dataclass
class CarouselImage:
    id: str
    image_url: str = ""
    image_cid: Optional[str] = None
    title: str = ""
    link: str = ""
    position: int = 0


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def stringify_id(value) -> str:
    if value is None:
        return ""
    if isinstance(value, ObjectId):
        return str(value)
    return str(value).strip()


def optional_text(value) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def parse_timestamp(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    return value.isoformat()


def _document_id(document) -> str:
    return stringify_id(document.get("_id", document.get("id")))


def product_from_document(document) -> Optional[Product]:
    if not document:
        return None
    return Product(
        id=_document_id(document),
        name=str(document.get("name") or ""),
        description=str(document.get("description") or ""),
        price=round(max(0.0, safe_float(document.get("price"), 0.0)), 2),
        category=str(document.get("category") or ""),
        image=str(document.get("image") or ""),
        image_cid=optional_text(
            document.get("image_cid") or document.get("imageCid")
        ),
        stock=safe_positive_int(document.get("stock"), 0),
    )


def order_line_from_document(document) -> Optional[OrderLine]:
    if not isinstance(document, dict):
        return None
    product_id = stringify_id(
        document.get("product_id")
        if document.get("product_id") is not None
        else document.get("productId")
    )
    return OrderLine(
        product_id=product_id,
        quantity=safe_positive_int(document.get("quantity"), 0),
    )


def shipping_address_from_document(document) -> Optional[ShippingAddress]:
    if not isinstance(document, dict):
        return None

    values: Dict[str, str] = {}
    for field_name in ADDRESS_FIELDS:
        for alias in ADDRESS_FIELD_ALIASES.get(field_name, (field_name,)):
            if document.get(alias) is not None:
                values[field_name] = str(document.get(alias)).strip()
                break

    if not any(values.values()):
        return None
    return ShippingAddress(**values)


def normalize_order_status(value) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ORDER_STATUSES else "pending"


def order_from_document(document) -> Optional[Order]:
    if not document:
        return None

    raw_lines = document.get("products")
    if not isinstance(raw_lines, list):
        raw_lines = document.get("items")
    lines: List[OrderLine] = []
    if isinstance(raw_lines, list):
        for raw_line in raw_lines:
            line = order_line_from_document(raw_line)
            if line is not None:
                lines.append(line)

    raw_user_id = document.get("user_id")
    if raw_user_id is None:
        raw_user_id = document.get("userId")

    payment_method = optional_text(
        document.get("payment_method") or document.get("paymentMethod")
    )
    payment_status = optional_text(
        document.get("payment_status") or document.get("paymentStatus")
    )
    payment_details = document.get("payment_details") or document.get(
        "paymentDetails"
    )

    return Order(
        id=_document_id(document),
        user_id=stringify_id(raw_user_id),
        products=lines,
        status=normalize_order_status(document.get("status")),
        total=round(max(0.0, safe_float(document.get("total"), 0.0)), 2),
        created_at=parse_timestamp(
            document.get("created_at") or document.get("createdAt")
        ),
        shipping_address=shipping_address_from_document(
            document.get("shipping_address") or document.get("shippingAddress")
        ),
        payment_method=payment_method,
        payment_status=payment_status,
        payment_details=payment_details if isinstance(payment_details, dict) else None,
    )


def normalize_role(value) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in USER_ROLES else "customer"


def user_from_document(document) -> Optional[User]:
    if not document:
        return None
    return User(
        id=_document_id(document),
        name=str(document.get("name") or ""),
        email=str(document.get("email") or "").strip().lower(),
        role=normalize_role(document.get("role")),
        external_id=optional_text(
            document.get("external_id") or document.get("clerkId")
        ),
    )


def category_from_document(document) -> Optional[Category]:
    if not document:
        return None

    raw_active = document.get("is_active")
    if raw_active is None:
        raw_active = document.get("isActive")

    return Category(
        id=_document_id(document),
        name=str(document.get("name") or ""),
        slug=str(document.get("slug") or ""),
        description=str(document.get("description") or ""),
        is_active=bool(raw_active),
        created_at=parse_timestamp(
            document.get("created_at") or document.get("createdAt")
        ),
        updated_at=parse_timestamp(
            document.get("updated_at") or document.get("updatedAt")
        ),
    )


def review_from_document(document) -> Optional[Review]:
    if not document:
        return None
    rating = safe_positive_int(document.get("rating"), 0)
    return Review(
        id=_document_id(document),
        product_id=stringify_id(document.get("product_id")),
        user_id=stringify_id(document.get("user_id")),
        user_name=str(document.get("user_name") or ""),
        rating=min(rating, 5),
        comment=str(document.get("comment") or ""),
        verified=bool(document.get("verified")),
        created_at=parse_timestamp(document.get("created_at")),
    )


def carousel_image_from_document(document) -> Optional[CarouselImage]:
    if not document:
        return None
    return CarouselImage(
        id=_document_id(document),
        image_url=str(document.get("image_url") or ""),
        image_cid=optional_text(document.get("image_cid")),
        title=str(document.get("title") or ""),
        link=str(document.get("link") or ""),
        position=safe_positive_int(document.get("position"), 0),
    )


def serialize_product(product: Product) -> Dict:
    return asdict(product)


def serialize_user(user: Optional[User]) -> Dict:
    if user is None:
        return {}
    return asdict(user)


def serialize_order(order: Order, customer: Optional[User] = None) -> Dict:
    payload = {
        "id": order.id,
        "user_id": order.user_id,
        "products": [asdict(line) for line in order.products],
        "status": order.status,
        "total": order.total,
        "created_at": format_timestamp(order.created_at),
        "shipping_address": asdict(order.shipping_address)
        if order.shipping_address
        else None,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "payment_details": order.payment_details,
    }
    if customer is not None:
        payload["user"] = serialize_user(customer)
    return payload


def serialize_category(category: Category) -> Dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "is_active": category.is_active,
        "created_at": format_timestamp(category.created_at),
        "updated_at": format_timestamp(category.updated_at),
    }


def serialize_review(review: Review) -> Dict:
    return {
        "id": review.id,
        "product_id": review.product_id,
        "user_id": review.user_id,
        "user_name": review.user_name,
        "rating": review.rating,
        "comment": review.comment,
        "verified": review.verified,
        "created_at": format_timestamp(review.created_at),
    }


def serialize_carousel_image(image: CarouselImage) -> Dict:
    return asdict(image)
