"""Pytest fixtures for the shop API tests."""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("DATABASE_URL", None)

import mongomock  # noqa: E402
import pytest  # noqa: E402
from bson import ObjectId  # noqa: E402

import database  # noqa: E402


@pytest.fixture(autouse=True)
def db():
    """A fresh in-memory database for every test, writes undone by compensation."""
    handle = database.connect(mongo_client=mongomock.MongoClient(), name="shop_test", transactions=False)
    database.ensure_indexes()
    yield handle
    database.disconnect()


@pytest.fixture
def make_product(db):
    """Insert a product and return its id."""

    def _make(name="Phone", stock=5, origin_price=100.0, discount=0, category="phones", slug=None, images=None):
        stamp = database.now()
        doc = {
            "name": name,
            "slug": slug or name.lower().replace(" ", "-"),
            "category": category,
            "images": images if images is not None else [{"url": f"{name.lower()}.jpg", "alt": name}],
            "description": f"A {name}",
            "price": {
                "origin_price": origin_price,
                "discount": discount,
                "sell_price": round(origin_price * (100 - discount) / 100, 2),
            },
            "stock": stock,
            "avg_rating": 0,
            "num_reviews": 0,
            "created_at": stamp,
            "updated_at": stamp,
        }
        return db["product"].insert_one(doc).inserted_id

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return db["product"].find_one({"_id": product_id})["stock"]

    return _stock


@pytest.fixture
def buyer():
    return ObjectId()


@pytest.fixture
def other_buyer():
    return ObjectId()


@pytest.fixture
def address():
    return {
        "fullname": "Nguyen Van A",
        "address": "12 Tran Hung Dao",
        "phone": "0912345678",
        "city": "Hanoi",
        "postalCode": "100000",
    }
