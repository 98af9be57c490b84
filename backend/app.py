import logging
import os
import re
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import bcrypt
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
)
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

from best_sellers import DEFAULT_BEST_SELLER_LIMIT, rank_best_sellers, sales_by_product
from datastore import (
    FALLBACK_PRODUCTS,
    DatastoreError,
    create_store,
    normalize_email,
)
from documents import (
    ORDER_STATUSES,
    USER_ROLES,
    Product,
    User,
    product_from_document,
    safe_float,
    safe_positive_int,
    serialize_carousel_image,
    serialize_category,
    serialize_order,
    serialize_product,
    serialize_review,
    serialize_user,
)
from pinning import DEFAULT_PINATA_API_URL, PinataClient, PinningError
from user_identity import AmbiguousIdentityError, attach_customers, resolve_user

load_dotenv()

FEATURED_SHOWCASE_LIMIT = 4
MAX_BEST_SELLER_LIMIT = 50
MIN_PASSWORD_LENGTH = 8


def create_app(test_config: Optional[Dict] = None, store=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        hours=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES", "1"))
    )
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", "mongodb://localhost:27017/beautystore")
    app.config["DATA_BACKEND"] = os.getenv(
        "DATA_BACKEND", "mongo" if os.getenv("MONGO_URI") else "static"
    )
    app.config["PINATA_JWT"] = os.getenv("PINATA_JWT", "")
    app.config["PINATA_GATEWAY_URL"] = os.getenv("PINATA_GATEWAY_URL", "")
    app.config["PINATA_API_URL"] = os.getenv("PINATA_API_URL", DEFAULT_PINATA_API_URL)
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["DEFAULT_ADMIN_EMAIL"] = os.getenv("DEFAULT_ADMIN_EMAIL", "")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")
    JWTManager(app)

    if store is None:
        db = None
        if app.config["DATA_BACKEND"] == "mongo":
            db = PyMongo(app).db
        store = create_store(app.config["DATA_BACKEND"], db=db)
    app.extensions["datastore"] = store
    app.logger.info("Using %s data backend", store.backend_name)

    pinata = PinataClient(
        app.config["PINATA_JWT"],
        gateway=app.config["PINATA_GATEWAY_URL"],
        api_url=app.config["PINATA_API_URL"],
    )
    app.extensions["pinata"] = pinata

    default_admin_email = normalize_email(app.config["DEFAULT_ADMIN_EMAIL"])

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    # --- Helpers ---

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = normalize_email(value)
        return bool(normalized and email_regex.match(normalized))

    def is_default_admin_email(value: Optional[str]) -> bool:
        return bool(default_admin_email) and normalize_email(value) == default_admin_email

    def get_user_role(user: Optional[User]) -> str:
        if user is None:
            return "customer"
        if is_default_admin_email(user.email):
            return "admin"
        return user.role

    def serialize_account(user: User) -> Dict:
        payload = serialize_user(user)
        payload["role"] = get_user_role(user)
        return payload

    def current_user_document() -> Optional[User]:
        identity = get_jwt_identity()
        if not identity:
            return None
        return store.get_user(identity)

    def require_role(*roles: str):
        allowed = {role for role in roles if role}
        current_user = current_user_document()
        if current_user is None:
            return None, (jsonify({"message": "Your account could not be found."}), 401)

        user_role = get_user_role(current_user)
        if user_role == "admin" or not allowed or user_role in allowed:
            return current_user, None

        return (
            None,
            (
                jsonify({"message": "You need additional permissions to perform this action."}),
                403,
            ),
        )

    def require_admin_user():
        return require_role("admin")

    def user_identifiers(user: Optional[User]) -> List[str]:
        if user is None:
            return []
        return [value for value in (user.id, user.external_id) if value]

    def read_payload() -> Dict:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            return payload
        return request.form.to_dict() if request.form else {}

    def parse_price(raw_value) -> Tuple[Optional[float], Optional[str]]:
        try:
            price_value = round(float(raw_value), 2)
        except (TypeError, ValueError):
            return None, "Price must be a valid number."
        if safe_float(price_value, -1.0) <= 0:
            return None, "Price must be greater than zero."
        return price_value, None

    def serialize_orders_with_customers(orders) -> List[Dict]:
        customers = attach_customers(store, orders)
        return [serialize_order(order, customers.get(order.user_id)) for order in orders]

    def resolve_showcase_products(limit=FEATURED_SHOWCASE_LIMIT):
        products = store.get_products()
        curated_ids = store.get_featured_product_ids()
        catalog = {product.id: product for product in products}

        selected: List[Product] = [
            catalog[product_id] for product_id in curated_ids if product_id in catalog
        ][:limit]
        source = "curated"
        if not selected:
            selected = rank_best_sellers(store.get_orders(), products, limit)
            source = "best_sellers"

        remaining_slots = max(0, limit - len(selected))
        if remaining_slots:
            used_ids = {product.id for product in selected}
            padding = [product for product in products if product.id not in used_ids]
            padding = padding[:remaining_slots]
            if padding:
                source = "mixed" if selected else "catalog"
            selected = selected + padding

        return selected[:limit], curated_ids, source

    def fallback_showcase_products(limit=FEATURED_SHOWCASE_LIMIT) -> List[Product]:
        return [product_from_document(document) for document in FALLBACK_PRODUCTS][:limit]

    def with_image_url(changes: Dict) -> Dict:
        image_cid = str(changes.get("image_cid") or changes.get("imageCid") or "").strip()
        if image_cid and not str(changes.get("image") or "").strip():
            changes["image"] = pinata.gateway_url(image_cid)
        return changes

    # --- Error handlers ---

    @app.errorhandler(DatastoreError)
    def handle_datastore_error(exc):
        app.logger.error("Datastore unavailable: %s", exc)
        return jsonify({"message": "The store database is unavailable. Please try again later."}), 503

    @app.errorhandler(AmbiguousIdentityError)
    def handle_ambiguous_identity(exc):
        app.logger.error("Identity conflict: %s (users: %s)", exc, ", ".join(exc.user_ids))
        return jsonify({"message": "This account is linked to more than one user record."}), 409

    # --- ROUTES ---

    @app.route("/health")
    def health():
        return {"status": "ok", "backend": store.backend_name}, 200

    # Accounts
    @app.route("/api/register", methods=["POST"])
    def register():
        payload = request.get_json(silent=True) or {}
        name = str(payload.get("name", "")).strip()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")
        external_id = str(payload.get("external_id") or payload.get("externalId") or "").strip()

        if not name:
            return jsonify({"message": "Please tell us your name."}), 400
        if not is_valid_email(email):
            return jsonify({"message": "Please provide a valid email address."}), 400
        if is_default_admin_email(email):
            app.logger.warning("Refused registration for the reserved administrator email")
            return jsonify({"message": "This email address cannot be used to register."}), 400
        if len(password) < MIN_PASSWORD_LENGTH:
            return (
                jsonify(
                    {"message": f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters long."}
                ),
                400,
            )

        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        try:
            user = store.create_user(
                {"name": name, "email": email, "role": "customer", "external_id": external_id or None},
                password_hash=password_hash,
            )
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400

        app.logger.info("Registered user %s", user.id)
        return jsonify({"message": "Account created successfully.", "user": serialize_account(user)}), 201

    @app.route("/api/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        user, password_hash = store.get_user_credentials(email)
        if not user or not password_hash:
            return jsonify({"message": "Invalid email or password."}), 401
        if not bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8")):
            return jsonify({"message": "Invalid email or password."}), 401

        access_token = create_access_token(identity=user.id)
        return jsonify({"access_token": access_token, "user": serialize_account(user)})

    @app.route("/api/account", methods=["GET"])
    @jwt_required()
    def get_account():
        current_user = current_user_document()
        if current_user is None:
            return jsonify({"message": "Your account could not be found."}), 404
        return jsonify({"user": serialize_account(current_user)})

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        category = (request.args.get("category") or "").strip() or None
        products = store.get_products(category=category)
        return jsonify({"products": [serialize_product(product) for product in products]})

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product = store.get_product(product_id)
        if product is None:
            return jsonify({"message": "Product not found."}), 404
        return jsonify({"product": serialize_product(product)})

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = with_image_url(dict(read_payload()))
        if not str(payload.get("name", "")).strip():
            return jsonify({"message": "A product name is required."}), 400

        price_value, price_error = parse_price(payload.get("price"))
        if price_error:
            return jsonify({"message": price_error}), 400
        payload["price"] = price_value

        if payload.get("stock") is not None and safe_positive_int(payload.get("stock"), -1) < 0:
            return jsonify({"message": "Stock must be a whole number of zero or more."}), 400

        try:
            product = store.add_product(payload)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400

        app.logger.info("%s created product %s", current_user.email, product.id)
        return jsonify({"message": "Product added successfully.", "product": serialize_product(product)}), 201

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        existing = store.get_product(product_id)
        if existing is None:
            return jsonify({"message": "Product not found."}), 404

        changes = with_image_url(dict(read_payload()))
        if "price" in changes:
            price_value, price_error = parse_price(changes.get("price"))
            if price_error:
                return jsonify({"message": price_error}), 400
            changes["price"] = price_value
        if "name" in changes and not str(changes.get("name") or "").strip():
            return jsonify({"message": "A product name is required."}), 400

        product = store.update_product(product_id, changes)
        if product is None:
            return jsonify({"message": "Product not found."}), 404

        if existing.image_cid and existing.image_cid != product.image_cid:
            pinata.unpin(existing.image_cid)

        app.logger.info("%s updated product %s", current_user.email, product.id)
        return jsonify({"message": "Product updated successfully.", "product": serialize_product(product)})

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        removed = store.delete_product(product_id)
        if removed is None:
            return jsonify({"message": "Product not found."}), 404
        if removed.image_cid:
            pinata.unpin(removed.image_cid)

        app.logger.info("%s deleted product %s", current_user.email, removed.id)
        return jsonify({"message": "Product removed successfully."})

    @app.route("/api/best-sellers", methods=["GET"])
    def list_best_sellers():
        limit = safe_positive_int(request.args.get("limit"), 0) or DEFAULT_BEST_SELLER_LIMIT
        limit = min(limit, MAX_BEST_SELLER_LIMIT)

        products = store.get_products()
        orders = store.get_orders()
        ranked = rank_best_sellers(orders, products, limit)
        units_sold = sales_by_product(orders, [product.id for product in ranked])

        return jsonify(
            {
                "products": [
                    {**serialize_product(product), "units_sold": units_sold.get(product.id, 0)}
                    for product in ranked
                ],
                "limit": limit,
            }
        )

    @app.route("/api/featured-products", methods=["GET"])
    def get_featured_products():
        try:
            products, requested_ids, source = resolve_showcase_products()
        except DatastoreError as exc:
            app.logger.error("Serving fallback showcase: %s", exc)
            products, requested_ids, source = fallback_showcase_products(), [], "fallback"

        return jsonify(
            {
                "products": [serialize_product(product) for product in products],
                "requested_ids": requested_ids,
                "source": source,
                "limit": FEATURED_SHOWCASE_LIMIT,
            }
        )

    # Settings
    @app.route("/api/settings/featured-products", methods=["GET"])
    def get_featured_settings():
        return jsonify({"featured_product_ids": store.get_featured_product_ids()})

    @app.route("/api/settings/featured-products", methods=["PUT", "POST"])
    @jwt_required()
    def update_featured_settings():
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        raw_ids = payload.get("featured_product_ids")
        if raw_ids is None:
            raw_ids = payload.get("featuredProductIds")
        if not isinstance(raw_ids, list):
            return jsonify({"message": "featured_product_ids must be a list of product ids."}), 400

        invalid_ids = [str(raw) for raw in raw_ids if not isinstance(raw, str) or not raw.strip()]
        if invalid_ids:
            return (
                jsonify(
                    {
                        "message": "One or more product identifiers were invalid.",
                        "invalid_ids": invalid_ids,
                    }
                ),
                400,
            )

        requested_ids = [raw.strip() for raw in raw_ids]
        missing_ids = [
            product_id for product_id in requested_ids if store.get_product(product_id) is None
        ]
        if missing_ids:
            return (
                jsonify(
                    {
                        "message": "Some selected products could not be found.",
                        "missing_ids": missing_ids,
                    }
                ),
                404,
            )

        saved_ids = store.set_featured_product_ids(requested_ids, updated_by=current_user.email)
        app.logger.info("%s updated featured products: %s", current_user.email, ", ".join(saved_ids))
        return jsonify(
            {
                "message": "Featured products updated successfully.",
                "featured_product_ids": saved_ids,
            }
        )

    # Categories
    @app.route("/api/categories", methods=["GET"])
    def list_categories_route():
        categories = store.get_categories()
        if (request.args.get("active") or "").strip().lower() in {"1", "true", "yes"}:
            categories = [category for category in categories if category.is_active]
        return jsonify({"categories": [serialize_category(category) for category in categories]})

    @app.route("/api/categories/<category_id>", methods=["GET"])
    def get_category_route(category_id: str):
        category = store.get_category(category_id) or store.get_category_by_slug(category_id)
        if category is None:
            return jsonify({"message": "Category not found."}), 404
        return jsonify({"category": serialize_category(category)})

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category_route():
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        try:
            category = store.create_category(payload)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400

        return (
            jsonify({"message": "Category created successfully.", "category": serialize_category(category)}),
            201,
        )

    @app.route("/api/categories/<category_id>", methods=["PUT"])
    @jwt_required()
    def update_category_route(category_id: str):
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        try:
            category = store.update_category(category_id, payload)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        if category is None:
            return jsonify({"message": "Category not found."}), 404

        return jsonify({"message": "Category updated successfully.", "category": serialize_category(category)})

    @app.route("/api/categories/<category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category_route(category_id: str):
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        category = store.get_category(category_id)
        if category is None or not store.delete_category(category_id):
            return jsonify({"message": "Category not found."}), 404

        return jsonify(
            {
                "message": f'"{category.name or "Category"}" has been removed from the catalog.',
                "category": {"id": category.id},
            }
        )

    # Orders
    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        current_user = current_user_document()
        if current_user is None:
            return jsonify({"message": "Your account could not be found."}), 401

        requested_user_id = (request.args.get("userId") or request.args.get("user_id") or "").strip()
        if get_user_role(current_user) == "admin":
            if requested_user_id:
                orders = store.get_user_orders(requested_user_id)
            else:
                orders = store.get_orders()
        else:
            if requested_user_id and requested_user_id not in user_identifiers(current_user):
                return jsonify({"message": "You can only view your own orders."}), 403
            orders = store.get_user_orders(current_user.id)

        app.logger.info("Returning %d orders for %s", len(orders), current_user.id)
        return jsonify({"orders": serialize_orders_with_customers(orders)})

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        current_user = current_user_document()
        if current_user is None:
            return jsonify({"message": "Your account could not be found."}), 401

        payload = request.get_json(silent=True) or {}
        user_id = str(get_jwt_identity())
        requested_user_id = str(payload.get("userId") or payload.get("user_id") or "").strip()
        if requested_user_id and requested_user_id not in user_identifiers(current_user):
            if get_user_role(current_user) != "admin":
                return jsonify({"message": "You can only place orders for your own account."}), 403
            user_id = requested_user_id

        raw_lines = payload.get("products")
        if not isinstance(raw_lines, list) or not raw_lines:
            return jsonify({"message": "Add at least one product to your order."}), 400

        lines: List[Dict[str, object]] = []
        order_total = 0.0
        for raw_line in raw_lines:
            if not isinstance(raw_line, dict):
                return jsonify({"message": "Every order line needs a product id."}), 400
            product_id = str(raw_line.get("productId") or raw_line.get("product_id") or "").strip()
            raw_quantity = raw_line.get("quantity", 1)
            quantity = safe_positive_int(raw_quantity, 0)
            if quantity < 1 or safe_float(raw_quantity, 0.0) != quantity:
                return jsonify({"message": "Quantities must be whole numbers of at least 1."}), 400
            product = store.get_product(product_id) if product_id else None
            if product is None:
                return jsonify({"message": f"Product {product_id} not found."}), 404
            order_total += product.price * quantity
            lines.append({"product_id": product.id, "quantity": quantity})

        order_data = {
            "user_id": user_id,
            "products": lines,
            "total": round(order_total, 2),
            "shipping_address": payload.get("shippingAddress") or payload.get("shipping_address"),
            "payment_method": payload.get("paymentMethod") or payload.get("payment_method"),
            "payment_status": payload.get("paymentStatus") or payload.get("payment_status"),
            "payment_details": payload.get("paymentDetails") or payload.get("payment_details"),
        }
        try:
            order = store.create_order(order_data)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400

        app.logger.info("Order %s created for %s (total %.2f)", order.id, user_id, order.total)
        return jsonify({"message": "Order created successfully.", "order": serialize_order(order)}), 201

    @app.route("/api/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order_detail(order_id: str):
        current_user = current_user_document()
        order = store.get_order(order_id)
        is_admin = get_user_role(current_user) == "admin" if current_user else False
        if order is None or (
            not is_admin and order.user_id not in user_identifiers(current_user)
        ):
            return jsonify({"message": "Order not found."}), 404

        try:
            customer = resolve_user(store, order.user_id)
        except AmbiguousIdentityError as exc:
            app.logger.warning("Not attaching a customer to order %s: %s", order.id, exc)
            customer = None
        return jsonify({"order": serialize_order(order, customer)})

    @app.route("/api/orders/<order_id>/status", methods=["PUT"])
    @jwt_required()
    def update_order_status(order_id: str):
        current_user, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        status_value = str(payload.get("status") or "").strip().lower()
        if not status_value:
            return jsonify({"message": "Status is required."}), 400

        if store.get_order(order_id) is None:
            return jsonify({"message": "Order not found."}), 404

        if status_value not in ORDER_STATUSES:
            return (
                jsonify(
                    {
                        "message": "Invalid status value.",
                        "allowed_statuses": list(ORDER_STATUSES),
                    }
                ),
                400,
            )

        order = store.update_order_status(order_id, status_value)
        if order is None:
            return jsonify({"message": "Order not found."}), 404

        app.logger.info("%s moved order %s to %s", current_user.email, order.id, order.status)
        return jsonify({"message": "Order status updated.", "order": serialize_order(order)})

    @app.route("/api/orders/<order_id>", methods=["DELETE"])
    @jwt_required()
    def delete_order(order_id: str):
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error
        if not store.delete_order(order_id):
            return jsonify({"message": "Order not found."}), 404
        return jsonify({"message": "Order removed successfully.", "order": {"id": order_id}})

    # Reviews
    @app.route("/api/products/<product_id>/reviews", methods=["GET"])
    def list_product_reviews(product_id: str):
        if store.get_product(product_id) is None:
            return jsonify({"message": "Product not found."}), 404

        reviews = store.get_product_reviews(product_id)
        average_rating = 0.0
        if reviews:
            average_rating = round(sum(review.rating for review in reviews) / len(reviews), 2)

        return jsonify(
            {
                "reviews": [serialize_review(review) for review in reviews],
                "count": len(reviews),
                "average_rating": average_rating,
            }
        )

    @app.route("/api/products/<product_id>/reviews", methods=["POST"])
    @jwt_required()
    def create_product_review(product_id: str):
        current_user = current_user_document()
        if current_user is None:
            return jsonify({"message": "Authentication required."}), 401

        payload = request.get_json(silent=True) or {}
        comment = str(payload.get("comment") or "").strip()
        if payload.get("rating") in (None, "") or not comment:
            return jsonify({"message": "Rating and comment are required."}), 400

        rating_value = safe_float(payload.get("rating"), 0.0)
        if rating_value < 1 or rating_value > 5 or rating_value != int(rating_value):
            return jsonify({"message": "Rating must be a number between 1 and 5."}), 400

        if store.get_product(product_id) is None:
            return jsonify({"message": "Product not found."}), 404

        display_name = str(payload.get("userName") or payload.get("user_name") or "").strip()
        review = store.upsert_review(
            product_id,
            str(get_jwt_identity()),
            display_name or current_user.name or "Anonymous",
            int(rating_value),
            comment,
            verified=True,
        )
        return jsonify({"message": "Review processed successfully.", "review": serialize_review(review)}), 201

    # Carousel
    @app.route("/api/carousel", methods=["GET"])
    def list_carousel_images():
        images = store.get_carousel_images()
        return jsonify({"images": [serialize_carousel_image(image) for image in images]})

    @app.route("/api/carousel", methods=["POST"])
    @jwt_required()
    def add_carousel_image():
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        payload = dict(request.get_json(silent=True) or {})
        image_cid = str(payload.get("image_cid") or payload.get("imageCid") or "").strip()
        if image_cid and not str(payload.get("image_url") or payload.get("imageUrl") or "").strip():
            payload["image_url"] = pinata.gateway_url(image_cid)
        try:
            image = store.add_carousel_image(payload)
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        return jsonify({"message": "Carousel image added.", "image": serialize_carousel_image(image)}), 201

    @app.route("/api/carousel/<image_id>", methods=["DELETE"])
    @jwt_required()
    def delete_carousel_image(image_id: str):
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        removed = store.delete_carousel_image(image_id)
        if removed is None:
            return jsonify({"message": "Carousel image not found."}), 404
        if removed.image_cid:
            pinata.unpin(removed.image_cid)
        return jsonify({"message": "Carousel image removed.", "image": {"id": removed.id}})

    # Uploads
    @app.route("/api/upload", methods=["POST"])
    @jwt_required()
    def upload_image():
        _, permission_error = require_admin_user()
        if permission_error:
            return permission_error

        image_file = request.files.get("file")
        if not image_file or not image_file.filename:
            return jsonify({"success": False, "message": "No file provided"}), 400

        filename = secure_filename(image_file.filename) or "upload"
        group_id = (request.form.get("groupId") or "").strip() or None
        try:
            pinned = pinata.pin_file(
                image_file.stream, filename, image_file.mimetype, group_id=group_id
            )
        except ValueError as exc:
            return jsonify({"success": False, "message": str(exc)}), 400
        except PinningError as exc:
            app.logger.error("Image upload failed: %s", exc)
            return jsonify({"success": False, "message": str(exc)}), 502

        return jsonify({"success": True, "cid": pinned.cid, "name": pinned.name, "url": pinned.url})

    # --- Admin Routes ---

    @app.route("/api/admin/users", methods=["GET"])
    @jwt_required()
    def list_users():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        return jsonify({"users": [serialize_account(user) for user in store.get_users()]})

    @app.route("/api/admin/users/<user_id>/role", methods=["PUT"])
    @jwt_required()
    def update_user_role(user_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        desired_role = str(payload.get("role", "")).strip().lower()
        if desired_role not in USER_ROLES:
            return jsonify({"message": "Role must be 'admin' or 'customer'."}), 400

        target = store.get_user(user_id)
        if target is None:
            return jsonify({"message": "User not found."}), 404
        if is_default_admin_email(target.email) and desired_role != "admin":
            return jsonify({"message": "The default administrator must remain an admin."}), 400

        updated_user = store.update_user(target.id, {"role": desired_role})
        app.logger.info("%s set role of %s to %s", admin_user.email, target.id, desired_role)
        return jsonify({"message": "User role updated.", "user": serialize_account(updated_user)})

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_user(user_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        target = store.get_user(user_id)
        if target is None:
            return jsonify({"message": "User not found."}), 404
        if is_default_admin_email(target.email):
            return jsonify({"message": "The default administrator cannot be removed."}), 400
        if target.id == admin_user.id:
            return jsonify({"message": "You cannot remove your own account."}), 400

        store.delete_user(target.id)
        display_name = target.name or "User"
        return jsonify(
            {
                "message": f"{display_name} has been removed from the directory.",
                "user": {"id": target.id},
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
