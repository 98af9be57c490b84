import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from datastore import StaticStore

PRODUCTS = [
    {"id": "p-lipstick", "name": "Velvet Lipstick", "price": 12.5, "category": "Makeup", "stock": 40},
    {"id": "p-serum", "name": "Glow Serum", "price": 30, "category": "Skincare", "stock": 12},
    {"id": "p-cream", "name": "Night Cream", "price": 20, "category": "Skincare", "stock": 7},
    {"id": "p-mask", "name": "Clay Mask", "price": 8, "category": "Skincare", "stock": 0},
    {"id": "p-oil", "name": "Hair Oil", "price": 15, "category": "Haircare", "stock": 3},
]

USERS = [
    {"id": "u-ada", "name": "Ada Admin", "email": "ada@beauty.test", "role": "admin"},
    {
        "id": "u-cara",
        "name": "Cara Customer",
        "email": "cara@beauty.test",
        "role": "customer",
        "external_id": "user_cara",
    },
    {"id": "u-bob", "name": "Bob Buyer", "email": "bob@beauty.test", "role": "customer"},
]

ORDERS = [
    {
        "id": "o-1",
        "user_id": "user_cara",
        "products": [
            {"product_id": "p-serum", "quantity": 3},
            {"product_id": "p-lipstick", "quantity": 1},
        ],
        "status": "delivered",
        "total": 102.5,
    },
    {
        "id": "o-2",
        "user_id": "u-bob",
        "products": [
            {"product_id": "p-lipstick", "quantity": 1},
            {"product_id": "p-cream", "quantity": 1},
        ],
        "status": "pending",
        "total": 32.5,
    },
    {
        "id": "o-3",
        "user_id": "u-bob",
        "products": [{"product_id": "p-discontinued", "quantity": 10}],
        "status": "shipped",
        "total": 50,
    },
]

CATEGORIES = [
    {"id": "c-skin", "name": "Skincare", "slug": "skincare", "is_active": True},
    {"id": "c-hair", "name": "Haircare", "slug": "haircare", "is_active": False},
]

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def store():
    return StaticStore(products=PRODUCTS, users=USERS, orders=ORDERS, categories=CATEGORIES)


@pytest.fixture
def app(store):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": TEST_JWT_SECRET,
            "DEFAULT_ADMIN_EMAIL": "",
            "PINATA_JWT": "pinata-test-jwt",
            "PINATA_GATEWAY_URL": "https://gateway.beauty.test",
        },
        store=store,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def make_headers(identity):
        with app.app_context():
            token = create_access_token(identity=identity)
        return {"Authorization": f"Bearer {token}"}

    return make_headers


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers("u-ada")


@pytest.fixture
def customer_headers(auth_headers):
    return auth_headers("u-cara")
