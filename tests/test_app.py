import io

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from datastore import DatastoreError, StaticStore
from pinning import PinnedFile, PinningError


def product_ids(response):
    return [product["id"] for product in response.get_json()["products"]]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "backend": "static"}


# Accounts


def test_register_login_and_account(client):
    response = client.post(
        "/api/register",
        json={"name": "Dana", "email": "Dana@Beauty.test", "password": "roses-are-red"},
    )
    assert response.status_code == 201
    assert response.get_json()["user"]["role"] == "customer"

    response = client.post(
        "/api/login", json={"email": "dana@beauty.test", "password": "roses-are-red"}
    )
    assert response.status_code == 200
    token = response.get_json()["access_token"]

    response = client.get("/api/account", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.get_json()["user"]["email"] == "dana@beauty.test"


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "", "email": "x@beauty.test", "password": "long-enough"},
        {"name": "Eve", "email": "not-an-email", "password": "long-enough"},
        {"name": "Eve", "email": "eve@beauty.test", "password": "short"},
        {"name": "Cara", "email": "cara@beauty.test", "password": "long-enough"},
    ],
)
def test_register_rejects_bad_input(client, payload):
    assert client.post("/api/register", json=payload).status_code == 400


def test_login_rejects_wrong_password(client):
    client.post(
        "/api/register",
        json={"name": "Dana", "email": "dana@beauty.test", "password": "roses-are-red"},
    )

    response = client.post("/api/login", json={"email": "dana@beauty.test", "password": "nope"})
    assert response.status_code == 401
    # seeded users have no password at all
    response = client.post("/api/login", json={"email": "cara@beauty.test", "password": "x"})
    assert response.status_code == 401


def test_provider_id_shared_by_two_users_is_a_conflict():
    twins = StaticStore(
        products=[],
        users=[
            {"id": "m1", "email": "one@beauty.test", "external_id": "user_twin"},
            {"id": "m2", "email": "two@beauty.test", "external_id": "user_twin"},
        ],
        orders=[],
    )
    app = create_app(
        {"TESTING": True, "JWT_SECRET_KEY": "twin-secret-key-that-is-long-enough-for-hs256"},
        store=twins,
    )

    with app.app_context():
        token = create_access_token(identity="user_twin")
    response = app.test_client().get(
        "/api/account", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 409


def test_no_admin_email_is_trusted_unless_configured(monkeypatch):
    monkeypatch.delenv("DEFAULT_ADMIN_EMAIL", raising=False)
    app = create_app(
        {"TESTING": True, "JWT_SECRET_KEY": "admin-secret-key-that-is-long-enough-for-hs256"},
        store=StaticStore(products=[], users=[], orders=[]),
    )
    client = app.test_client()

    response = client.post(
        "/api/register",
        json={"name": "Mallory", "email": "admin@example.com", "password": "let-me-in-please"},
    )
    assert response.status_code == 201
    assert response.get_json()["user"]["role"] == "customer"

    token = client.post(
        "/api/login", json={"email": "admin@example.com", "password": "let-me-in-please"}
    ).get_json()["access_token"]
    response = client.post(
        "/api/products",
        json={"name": "Rose Toner", "price": 14.99},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 403


def test_configured_admin_email_cannot_be_registered():
    owner_store = StaticStore(
        products=[],
        users=[{"id": "u-owner", "name": "Owner", "email": "owner@beauty.test", "role": "customer"}],
        orders=[],
    )
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "owner-secret-key-that-is-long-enough-for-hs256",
            "DEFAULT_ADMIN_EMAIL": "Owner@Beauty.test",
        },
        store=owner_store,
    )
    client = app.test_client()

    response = client.post(
        "/api/register",
        json={"name": "Mallory", "email": "OWNER@beauty.test", "password": "let-me-in-please"},
    )
    assert response.status_code == 400

    with app.app_context():
        token = create_access_token(identity="u-owner")
    response = client.post(
        "/api/products",
        json={"name": "Rose Toner", "price": 14.99},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 201


# Products


def test_list_and_filter_products(client):
    assert len(product_ids(client.get("/api/products"))) == 5
    assert product_ids(client.get("/api/products?category=skincare")) == [
        "p-serum",
        "p-cream",
        "p-mask",
    ]


def test_get_product(client):
    assert client.get("/api/products/p-oil").get_json()["product"]["name"] == "Hair Oil"
    assert client.get("/api/products/p-missing").status_code == 404


def test_product_writes_need_an_admin(client, customer_headers):
    payload = {"name": "Rose Toner", "price": 14.99}

    assert client.post("/api/products", json=payload).status_code == 401
    assert client.post("/api/products", json=payload, headers=customer_headers).status_code == 403
    assert client.delete("/api/products/p-oil", headers=customer_headers).status_code == 403


def test_create_update_and_delete_product(client, app, admin_headers):
    unpinned = []
    pinata = app.extensions["pinata"]
    pinata.unpin = lambda cid: unpinned.append(cid) or True

    response = client.post(
        "/api/products",
        json={"name": "Rose Toner", "price": "14.99", "category": "Skincare", "image_cid": "bafyrose"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["image"] == "https://gateway.beauty.test/ipfs/bafyrose"

    response = client.put(
        f"/api/products/{product['id']}", json={"price": 16}, headers=admin_headers
    )
    assert response.get_json()["product"]["price"] == 16.0

    response = client.delete(f"/api/products/{product['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert unpinned == ["bafyrose"]
    assert client.delete(f"/api/products/{product['id']}", headers=admin_headers).status_code == 404


@pytest.mark.parametrize(
    "payload",
    [{"name": "Toner", "price": 0}, {"name": "Toner", "price": "free"}, {"price": 5}],
)
def test_create_product_validates(client, admin_headers, payload):
    assert client.post("/api/products", json=payload, headers=admin_headers).status_code == 400


def test_datastore_outage_is_service_unavailable(client, store, monkeypatch):
    def unreachable(*args, **kwargs):
        raise DatastoreError("get_products failed: connection refused")

    monkeypatch.setattr(store, "get_products", unreachable)

    response = client.get("/api/products")
    assert response.status_code == 503
    assert "unavailable" in response.get_json()["message"]


# Best sellers and the home showcase


def test_best_sellers_rank_by_units_sold(client):
    response = client.get("/api/best-sellers")
    payload = response.get_json()

    assert product_ids(response) == ["p-serum", "p-lipstick", "p-cream"]
    assert [product["units_sold"] for product in payload["products"]] == [3, 2, 1]
    assert product_ids(client.get("/api/best-sellers?limit=1")) == ["p-serum"]


def test_showcase_pads_best_sellers_from_catalog(client):
    response = client.get("/api/featured-products")
    payload = response.get_json()

    assert product_ids(response) == ["p-serum", "p-lipstick", "p-cream", "p-mask"]
    assert payload["source"] == "mixed"
    assert payload["requested_ids"] == []


def test_showcase_uses_catalog_when_nothing_sold(store, client):
    for order in store.get_orders():
        store.delete_order(order.id)

    response = client.get("/api/featured-products")

    assert response.get_json()["source"] == "catalog"
    assert product_ids(response) == ["p-lipstick", "p-serum", "p-cream", "p-mask"]


def test_curated_showcase_keeps_curated_order(client, admin_headers):
    curated = ["p-oil", "p-mask", "p-cream", "p-serum"]
    response = client.put(
        "/api/settings/featured-products",
        json={"featuredProductIds": curated},
        headers=admin_headers,
    )
    assert response.status_code == 200

    assert client.get("/api/settings/featured-products").get_json() == {
        "featured_product_ids": curated
    }
    response = client.get("/api/featured-products")
    assert product_ids(response) == curated
    assert response.get_json()["source"] == "curated"


def test_short_curation_is_padded(client, admin_headers):
    client.post(
        "/api/settings/featured-products",
        json={"featured_product_ids": ["p-oil", "p-cream"]},
        headers=admin_headers,
    )

    response = client.get("/api/featured-products")

    assert product_ids(response) == ["p-oil", "p-cream", "p-lipstick", "p-serum"]
    assert response.get_json()["source"] == "mixed"


def test_featured_settings_validation(client, admin_headers, customer_headers):
    url = "/api/settings/featured-products"

    assert client.put(url, json={"featured_product_ids": ["p-oil"]}, headers=customer_headers).status_code == 403
    assert client.put(url, json={"featured_product_ids": "p-oil"}, headers=admin_headers).status_code == 400
    assert client.put(url, json={"featured_product_ids": [7]}, headers=admin_headers).status_code == 400

    response = client.put(url, json={"featured_product_ids": ["p-oil", "p-gone"]}, headers=admin_headers)
    assert response.status_code == 404
    assert response.get_json()["missing_ids"] == ["p-gone"]


def test_showcase_falls_back_when_datastore_is_down(client, store, monkeypatch):
    def unreachable(*args, **kwargs):
        raise DatastoreError("get_products failed: connection refused")

    monkeypatch.setattr(store, "get_products", unreachable)

    response = client.get("/api/featured-products")

    assert response.status_code == 200
    assert response.get_json()["source"] == "fallback"
    assert product_ids(response) == ["fallback-1"]


# Orders


def test_customer_sees_orders_saved_under_provider_id(client, customer_headers):
    response = client.get("/api/orders", headers=customer_headers)
    orders = response.get_json()["orders"]

    assert [order["id"] for order in orders] == ["o-1"]
    assert orders[0]["user"]["email"] == "cara@beauty.test"


def test_customer_cannot_read_other_users_orders(client, customer_headers):
    assert client.get("/api/orders?userId=u-bob", headers=customer_headers).status_code == 403
    assert client.get("/api/orders?userId=user_cara", headers=customer_headers).status_code == 200


def test_admin_sees_every_order_with_customer(client, admin_headers):
    orders = client.get("/api/orders", headers=admin_headers).get_json()["orders"]

    assert [order["id"] for order in orders] == ["o-1", "o-2", "o-3"]
    assert orders[0]["user"]["name"] == "Cara Customer"
    assert orders[1]["user"]["name"] == "Bob Buyer"


def test_admin_filters_orders_by_either_identifier(client, admin_headers):
    for identifier in ("u-cara", "user_cara"):
        response = client.get(f"/api/orders?userId={identifier}", headers=admin_headers)
        assert [order["id"] for order in response.get_json()["orders"]] == ["o-1"]

    response = client.get("/api/orders?userId=user_nobody", headers=admin_headers)
    assert response.get_json()["orders"] == []


def test_checkout_computes_total_from_catalog(client, auth_headers):
    response = client.post(
        "/api/orders",
        json={
            "products": [
                {"productId": "p-lipstick", "quantity": 2},
                {"productId": "p-serum"},
            ],
            "total": 1,
            "shippingAddress": {"fullName": "Bob Buyer", "city": "Leeds"},
        },
        headers=auth_headers("u-bob"),
    )

    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["total"] == 55.0
    assert order["user_id"] == "u-bob"
    assert order["status"] == "pending"
    assert order["payment_method"] == "cash_on_delivery"
    assert order["shipping_address"]["city"] == "Leeds"


def test_checkout_validation(client, customer_headers):
    assert client.post("/api/orders", json={"products": []}, headers=customer_headers).status_code == 400
    response = client.post(
        "/api/orders", json={"products": [{"productId": "p-gone"}]}, headers=customer_headers
    )
    assert response.status_code == 404
    response = client.post(
        "/api/orders",
        json={"userId": "u-bob", "products": [{"productId": "p-oil"}]},
        headers=customer_headers,
    )
    assert response.status_code == 403
    response = client.post(
        "/api/orders",
        json={"products": [{"productId": "p-oil"}], "paymentMethod": "barter"},
        headers=customer_headers,
    )
    assert response.status_code == 400


@pytest.mark.parametrize("quantity", [0, -2, 2.5, "lots"])
def test_checkout_rejects_bad_quantities(client, store, customer_headers, quantity):
    response = client.post(
        "/api/orders",
        json={"products": [{"productId": "p-oil", "quantity": quantity}]},
        headers=customer_headers,
    )

    assert response.status_code == 400
    assert len(store.get_orders()) == 3


def test_order_detail_is_limited_to_owner(client, admin_headers, customer_headers, auth_headers):
    assert client.get("/api/orders/o-2", headers=customer_headers).status_code == 404

    response = client.get("/api/orders/o-2", headers=auth_headers("u-bob"))
    assert response.get_json()["order"]["user"]["name"] == "Bob Buyer"

    assert client.get("/api/orders/o-1", headers=customer_headers).status_code == 200
    assert client.get("/api/orders/o-1", headers=admin_headers).status_code == 200


def test_order_status_updates(client, admin_headers, customer_headers):
    url = "/api/orders/o-2/status"

    assert client.put(url, json={"status": "shipped"}, headers=customer_headers).status_code == 403
    assert client.put(url, json={}, headers=admin_headers).status_code == 400
    assert client.put(url, json={"status": "lost"}, headers=admin_headers).status_code == 400
    assert client.put("/api/orders/o-9/status", json={"status": "shipped"}, headers=admin_headers).status_code == 404

    response = client.put(url, json={"status": "Shipped"}, headers=admin_headers)
    assert response.get_json()["order"]["status"] == "shipped"


def test_delete_order(client, admin_headers):
    assert client.delete("/api/orders/o-3", headers=admin_headers).status_code == 200
    assert client.delete("/api/orders/o-3", headers=admin_headers).status_code == 404


# Reviews


def test_reviews_are_upserted_per_user(client, customer_headers):
    url = "/api/products/p-serum/reviews"
    assert client.get(url).get_json() == {"reviews": [], "count": 0, "average_rating": 0.0}

    client.post(url, json={"rating": 4, "comment": "Lovely glow"}, headers=customer_headers)
    response = client.post(url, json={"rating": 2, "comment": "Broke me out"}, headers=customer_headers)
    assert response.status_code == 201

    payload = client.get(url).get_json()
    assert payload["count"] == 1
    assert payload["average_rating"] == 2.0
    assert payload["reviews"][0]["user_name"] == "Cara Customer"


@pytest.mark.parametrize(
    "payload",
    [{"rating": 6, "comment": "Wow"}, {"rating": 0, "comment": "Meh"}, {"rating": 4}, {"comment": "No stars"}],
)
def test_review_validation(client, customer_headers, payload):
    response = client.post("/api/products/p-serum/reviews", json=payload, headers=customer_headers)
    assert response.status_code == 400


def test_review_for_unknown_product(client, customer_headers):
    response = client.post(
        "/api/products/p-gone/reviews", json={"rating": 5, "comment": "?"}, headers=customer_headers
    )
    assert response.status_code == 404
    assert client.get("/api/products/p-gone/reviews").status_code == 404


# Categories


def test_category_listing(client):
    names = [c["name"] for c in client.get("/api/categories").get_json()["categories"]]
    assert names == ["Haircare", "Skincare"]

    active = client.get("/api/categories?active=true").get_json()["categories"]
    assert [c["slug"] for c in active] == ["skincare"]

    assert client.get("/api/categories/skincare").get_json()["category"]["id"] == "c-skin"
    assert client.get("/api/categories/c-none").status_code == 404


def test_category_admin_crud(client, admin_headers, customer_headers):
    assert client.post("/api/categories", json={"name": "Body Care"}, headers=customer_headers).status_code == 403

    response = client.post("/api/categories", json={"name": "Body Care"}, headers=admin_headers)
    assert response.status_code == 201
    assert response.get_json()["category"]["slug"] == "body-care"
    assert client.post("/api/categories", json={"name": "Body Care"}, headers=admin_headers).status_code == 400

    response = client.put("/api/categories/c-hair", json={"is_active": True}, headers=admin_headers)
    assert response.get_json()["category"]["is_active"] is True

    assert client.delete("/api/categories/c-hair", headers=admin_headers).status_code == 200
    assert client.delete("/api/categories/c-hair", headers=admin_headers).status_code == 404


# Carousel and uploads


def test_carousel_images(client, app, admin_headers):
    unpinned = []
    app.extensions["pinata"].unpin = lambda cid: unpinned.append(cid) or True

    response = client.post(
        "/api/carousel", json={"image_cid": "bafyslide", "title": "Spring"}, headers=admin_headers
    )
    assert response.status_code == 201
    image = response.get_json()["image"]
    assert image["image_url"] == "https://gateway.beauty.test/ipfs/bafyslide"

    assert len(client.get("/api/carousel").get_json()["images"]) == 1
    assert client.post("/api/carousel", json={"title": "empty"}, headers=admin_headers).status_code == 400

    assert client.delete(f"/api/carousel/{image['id']}", headers=admin_headers).status_code == 200
    assert unpinned == ["bafyslide"]


def test_upload_pins_file(client, app, admin_headers):
    calls = []

    def fake_pin_file(stream, filename, content_type, group_id=None):
        calls.append((filename, content_type, group_id))
        return PinnedFile(cid="bafyup", name=filename, url="https://gateway.beauty.test/ipfs/bafyup")

    app.extensions["pinata"].pin_file = fake_pin_file

    response = client.post(
        "/api/upload",
        data={"file": (io.BytesIO(b"\x89PNG"), "Photo One.png"), "groupId": "grp-1"},
        content_type="multipart/form-data",
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.get_json()["cid"] == "bafyup"
    assert calls == [("Photo_One.png", "image/png", "grp-1")]


def test_upload_errors(client, app, admin_headers, customer_headers):
    assert client.post("/api/upload", data={}, headers=admin_headers).status_code == 400
    assert client.post("/api/upload", data={}, headers=customer_headers).status_code == 403

    response = client.post(
        "/api/upload",
        data={"file": (io.BytesIO(b"hello"), "notes.txt")},
        content_type="multipart/form-data",
        headers=admin_headers,
    )
    assert response.status_code == 400

    def failing_pin_file(*args, **kwargs):
        raise PinningError("Upload to Pinata failed: 500 Server Error")

    app.extensions["pinata"].pin_file = failing_pin_file
    response = client.post(
        "/api/upload",
        data={"file": (io.BytesIO(b"\x89PNG"), "photo.png")},
        content_type="multipart/form-data",
        headers=admin_headers,
    )
    assert response.status_code == 502


# Admin users


def test_admin_user_management(client, admin_headers, customer_headers):
    assert client.get("/api/admin/users", headers=customer_headers).status_code == 403
    assert len(client.get("/api/admin/users", headers=admin_headers).get_json()["users"]) == 3

    url = "/api/admin/users/u-bob/role"
    assert client.put(url, json={"role": "owner"}, headers=admin_headers).status_code == 400
    assert client.put("/api/admin/users/u-404/role", json={"role": "admin"}, headers=admin_headers).status_code == 404
    response = client.put(url, json={"role": "admin"}, headers=admin_headers)
    assert response.get_json()["user"]["role"] == "admin"

    assert client.delete("/api/admin/users/u-ada", headers=admin_headers).status_code == 400
    assert client.delete("/api/admin/users/u-bob", headers=admin_headers).status_code == 200
    assert client.delete("/api/admin/users/u-bob", headers=admin_headers).status_code == 404
