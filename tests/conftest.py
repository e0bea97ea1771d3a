"""Pytest fixtures for FreshCart tests."""

from datetime import date, datetime, timezone

import mongomock
import pytest
from bson import ObjectId

from backend import Backend
from orders import OrderOrchestrator
from schemas import CheckoutRequest, DeliveryAddress, PaymentMethod
from session import ShopperSession

OWNER = "user-1"
PIN_CODE = "560001"


@pytest.fixture
def mongo_db():
    """A fresh in-memory MongoDB database."""
    return mongomock.MongoClient()["freshcart_test"]


@pytest.fixture
def backend(mongo_db):
    b = Backend(mongo_db)
    b.ensure_indexes()
    mongo_db["delivery_pin_code"].insert_one({
        "pin_code": PIN_CODE,
        "area_name": "Indiranagar",
        "city": "Bengaluru",
        "is_active": True,
        "delivery_charge": 40,
    })
    return b


@pytest.fixture
def vendor_id(mongo_db):
    return str(mongo_db["vendor"].insert_one({"name": "Coastal Catch", "is_active": True}).inserted_id)


@pytest.fixture
def make_product(mongo_db, vendor_id):
    def _make(name="Seer Fish", price_per_kg=500.0, stock_kg=10.0, min_order_kg=0.5, is_available=True, **fields):
        now = datetime.now(timezone.utc)
        doc = {
            "vendor_id": vendor_id,
            "name": name,
            "image_url": f"https://img.example/{name.lower().replace(' ', '-')}.jpg",
            "price_per_kg": price_per_kg,
            "stock_kg": stock_kg,
            "min_order_kg": min_order_kg,
            "is_available": is_available,
            "created_at": now,
            "updated_at": now,
        }
        doc.update(fields)
        return str(mongo_db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def make_profile(mongo_db):
    def _make(owner=OWNER, wallet_balance=0.0, referral_code=None, referred_by=None, first_order_completed=False):
        doc = {
            "_id": owner,
            "full_name": "Asha Rao",
            "phone": "9876543210",
            "wallet_balance": wallet_balance,
            "referral_count": 0,
            "first_order_completed": first_order_completed,
            "referral_code": referral_code or f"REF-{owner.upper()}",
        }
        if referred_by:
            doc["referred_by"] = referred_by
        mongo_db["profile"].insert_one(doc)
        return owner

    return _make


@pytest.fixture
def make_coupon(mongo_db):
    def _make(code="FRESH100", **fields):
        doc = {
            "code": code,
            "discount_type": "flat",
            "discount_value": 100,
            "min_order_amount": 0,
            "max_discount": None,
            "is_active": True,
            "usage_limit": None,
            "used_count": 0,
            "valid_from": None,
            "valid_until": None,
        }
        doc.update(fields)
        mongo_db["coupon"].insert_one(doc)
        return code

    return _make


@pytest.fixture
def profile(make_profile):
    return make_profile()


@pytest.fixture
def session(backend, profile):
    return ShopperSession(backend, OWNER).load()


@pytest.fixture
def orchestrator(backend):
    return OrderOrchestrator(backend, is_online=lambda: True, today=lambda: date(2026, 10, 18))


@pytest.fixture
def address():
    return DeliveryAddress(
        full_name="Asha Rao",
        phone="9876543210",
        address_line1="12 Beach Road",
        city="Bengaluru",
        state="Karnataka",
        pin_code=PIN_CODE,
    )


@pytest.fixture
def checkout_request(address):
    def _make(payment_method=PaymentMethod.COD, **kwargs):
        return CheckoutRequest(address=address, payment_method=payment_method, **kwargs)

    return _make


@pytest.fixture
def stock_of(mongo_db):
    def _stock(product_id):
        return mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock_kg"]

    return _stock
