"""
Store-side operations used by the checkout engine.

Each method is one remote call against MongoDB. The operations that must be
atomic (stock deduction, wallet debit, coupon usage, referral grant) are each
a single guarded update of one document, so concurrent callers are serialized
by the server and retries of the same order are no-ops.
"""

import functools
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

import config
from database import create_document, get_documents
from errors import CouponRejected, InsufficientWallet, InvalidTransition, NetworkError, NotFound, PersistenceError
from schemas import (
    CartLine,
    Category,
    Coupon,
    CouponResult,
    DeliveryInfo,
    DiscountType,
    Order,
    OrderLine,
    Product,
    Profile,
    StockDeductionResult,
    round_kg,
)

logger = logging.getLogger("freshcart.backend")

# Half a gram; absorbs float drift left behind by $inc
KG_TOLERANCE = 0.0005


def remote(func):
    """Translate driver failures into the engine's error taxonomy."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConnectionFailure as e:
            logger.warning(f"{func.__name__} could not reach the store: {e}")
            raise NetworkError("Could not reach the store. Please try again.") from e
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error(f"{func.__name__} failed: {e}")
            raise PersistenceError(f"Storage error during {func.__name__}") from e

    return wrapper


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_str_id(doc):
    if doc and "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


class Backend:
    """Remote collaborators of the engine, bound to one MongoDB database."""

    def __init__(self, database):
        if database is None:
            raise RuntimeError("Database not available")
        self.db = database

    def ensure_indexes(self):
        self.db["cart_item"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        self.db["coupon"].create_index("code", unique=True)
        self.db["profile"].create_index("referral_code", unique=True, sparse=True)
        self.db["order_item"].create_index("order_id")

    @remote
    def ping(self) -> bool:
        try:
            self.db.command("ping")
        except ConnectionFailure:
            return False
        return True

    # Catalog

    def _product_from_doc(self, doc) -> Product:
        doc = to_str_id(doc)
        vendor = None
        if doc.get("vendor_id"):
            vendor_oid = to_object_id(doc["vendor_id"])
            if vendor_oid is not None:
                vendor = self.db["vendor"].find_one({"_id": vendor_oid}, {"name": 1})
        return Product(
            id=doc["id"],
            vendor_id=doc.get("vendor_id"),
            category_id=doc.get("category_id"),
            name=doc.get("name", "Product"),
            description=doc.get("description"),
            image_url=doc.get("image_url"),
            price_per_kg=float(doc.get("price_per_kg", 0)),
            stock_kg=max(0.0, round_kg(doc.get("stock_kg", 0))),
            min_order_kg=float(doc.get("min_order_kg", 0.5)),
            is_featured=bool(doc.get("is_featured", False)),
            is_available=bool(doc.get("is_available", True)),
            vendor_name=vendor.get("name") if vendor else None,
        )

    @remote
    def read_products(self, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[Product]:
        docs = get_documents("product", filter_dict, limit=limit, database=self.db)
        return [self._product_from_doc(d) for d in docs]

    @remote
    def search_products(self, query: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[Product]:
        """Products whose name contains `query`, ignoring case."""
        filter_dict = dict(filter_dict or {})
        filter_dict["name"] = {"$regex": re.escape(query), "$options": "i"}
        return self.read_products(filter_dict, limit=limit)

    @remote
    def read_categories(self) -> List[Category]:
        categories = []
        for doc in self.db["category"].find({}).sort([("display_order", ASCENDING), ("name", ASCENDING)]):
            doc = to_str_id(doc)
            doc["product_count"] = self.db["product"].count_documents({"category_id": doc["id"], "is_available": True})
            categories.append(Category(**doc))
        return categories

    @remote
    def read_category(self, slug: str) -> Optional[Category]:
        doc = self.db["category"].find_one({"slug": slug})
        if not doc:
            return None
        return Category(**to_str_id(doc))

    @remote
    def read_product(self, product_id: str) -> Optional[Product]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = self.db["product"].find_one({"_id": oid})
        if not doc:
            return None
        return self._product_from_doc(doc)

    @remote
    def read_stock(self, product_id: str) -> Optional[float]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = self.db["product"].find_one({"_id": oid}, {"stock_kg": 1})
        if not doc:
            return None
        return max(0.0, round_kg(doc.get("stock_kg", 0)))

    @remote
    def deduct_stock(self, product_id: str, quantity_kg: float) -> StockDeductionResult:
        """Atomically take `quantity_kg` off a product's stock.

        The guard on stock_kg makes the decrement a compare-and-swap: of two
        requests for the last unit only one matches, and the other reads back
        the stock left after the winner. Quantities are compared to the gram.
        """
        oid = to_object_id(product_id)
        if oid is None:
            return StockDeductionResult(success=False, product_name="Unknown product", available_stock=0)
        quantity_kg = round_kg(quantity_kg)
        doc = self.db["product"].find_one_and_update(
            {"_id": oid, "is_available": {"$ne": False}, "stock_kg": {"$gte": quantity_kg - KG_TOLERANCE}},
            {"$inc": {"stock_kg": -quantity_kg}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            remaining = max(0.0, round_kg(doc["stock_kg"]))
            if remaining != doc["stock_kg"]:
                # Only applies if no other write touched the stock in between
                self.db["product"].update_one({"_id": oid, "stock_kg": doc["stock_kg"]}, {"$set": {"stock_kg": remaining}})
            return StockDeductionResult(success=True, product_name=doc.get("name", ""), available_stock=remaining)
        current = self.db["product"].find_one({"_id": oid}, {"name": 1, "stock_kg": 1, "is_available": 1})
        if not current:
            return StockDeductionResult(success=False, product_name="Unknown product", available_stock=0)
        available = round_kg(current.get("stock_kg", 0)) if current.get("is_available", True) else 0.0
        return StockDeductionResult(success=False, product_name=current.get("name", ""), available_stock=max(0.0, available))

    # Cart

    @remote
    def read_cart(self, owner_id: str) -> List[CartLine]:
        docs = self.db["cart_item"].find({"user_id": owner_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        return [CartLine(**to_str_id(d)) for d in docs]

    @remote
    def write_cart_line(self, owner_id: str, product_id: str, quantity_kg: float, line_id: Optional[str] = None) -> str:
        now = datetime.now(timezone.utc)
        quantity_kg = round_kg(quantity_kg)
        if line_id is None:
            return create_document(
                "cart_item",
                {"user_id": owner_id, "product_id": product_id, "quantity_kg": quantity_kg},
                database=self.db,
            )
        res = self.db["cart_item"].update_one(
            {"_id": to_object_id(line_id), "user_id": owner_id},
            {"$set": {"quantity_kg": quantity_kg, "updated_at": now}},
        )
        if res.matched_count == 0:
            raise NotFound("Cart item not found")
        return line_id

    @remote
    def delete_cart_line(self, owner_id: str, line_id: str) -> bool:
        res = self.db["cart_item"].delete_one({"_id": to_object_id(line_id), "user_id": owner_id})
        return res.deleted_count > 0

    @remote
    def delete_cart(self, owner_id: str) -> int:
        return self.db["cart_item"].delete_many({"user_id": owner_id}).deleted_count

    # Profiles and delivery

    @remote
    def read_profile(self, owner_id: str) -> Optional[Profile]:
        doc = self.db["profile"].find_one({"_id": owner_id})
        if not doc:
            return None
        return Profile(**to_str_id(doc))

    @remote
    def read_delivery_info(self, pin_code: str) -> Optional[DeliveryInfo]:
        doc = self.db["delivery_pin_code"].find_one({"pin_code": pin_code, "is_active": True})
        if not doc:
            return None
        doc.pop("_id", None)
        return DeliveryInfo(**doc)

    # Coupons

    @remote
    def evaluate_coupon(self, code: str, order_amount: float, now: Optional[datetime] = None) -> CouponResult:
        """Apply the coupon rules to an order amount. Never touches used_count."""
        doc = self.db["coupon"].find_one({"code": code})
        if not doc:
            return CouponResult(valid=False, message="Invalid coupon code")
        doc.pop("_id", None)
        coupon = Coupon(**doc)
        now = now or datetime.now(timezone.utc)

        if not coupon.is_active:
            return CouponResult(valid=False, message="This coupon is no longer active")
        if coupon.valid_from and as_utc(coupon.valid_from) > now:
            return CouponResult(valid=False, message="This coupon is not active yet")
        if coupon.valid_until and as_utc(coupon.valid_until) < now:
            return CouponResult(valid=False, message="This coupon has expired")
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            return CouponResult(valid=False, message="This coupon has reached its usage limit")
        if order_amount < coupon.min_order_amount:
            return CouponResult(valid=False, message=f"Minimum order amount is Rs.{coupon.min_order_amount:.0f}")

        if coupon.discount_type == DiscountType.PERCENT:
            discount = order_amount * coupon.discount_value / 100.0
            if coupon.max_discount is not None:
                discount = min(discount, coupon.max_discount)
        else:
            discount = coupon.discount_value
        discount = round(discount, 2)
        return CouponResult(valid=True, discount=discount, message=f"Coupon applied! You save Rs.{discount:.0f}")

    @remote
    def increment_coupon_usage(self, code: str, order_id: str) -> bool:
        """Count one use of `code` for `order_id`. Returns False if it was already counted.

        The usage limit is part of the update guard, so two orders that both
        passed evaluation cannot push used_count past it.
        """
        coupon = self.db["coupon"].find_one({"code": code}, {"usage_limit": 1})
        if not coupon:
            raise NotFound(f"Coupon {code} not found")
        query = {"code": code, "applied_orders": {"$ne": order_id}}
        if coupon.get("usage_limit") is not None:
            query["used_count"] = {"$lt": coupon["usage_limit"]}
        res = self.db["coupon"].update_one(
            query,
            {"$inc": {"used_count": 1}, "$push": {"applied_orders": order_id}},
        )
        if res.matched_count:
            return True
        current = self.db["coupon"].find_one({"code": code}, {"applied_orders": 1})
        if order_id in current.get("applied_orders", []):
            return False
        logger.warning(f"Coupon {code} hit its usage limit before order {order_id} was counted")
        raise CouponRejected("This coupon has reached its usage limit")

    # Wallet and referrals

    @remote
    def debit_wallet(self, owner_id: str, amount: float, order_id: str) -> bool:
        """Debit `amount` once per order. Returns False when `order_id` was already debited."""
        res = self.db["profile"].update_one(
            {"_id": owner_id, "wallet_balance": {"$gte": amount}, "wallet_debits": {"$ne": order_id}},
            {"$inc": {"wallet_balance": -amount}, "$push": {"wallet_debits": order_id}},
        )
        if res.matched_count:
            return True
        doc = self.db["profile"].find_one({"_id": owner_id}, {"wallet_balance": 1, "wallet_debits": 1})
        if not doc:
            raise NotFound("Profile not found")
        if order_id in doc.get("wallet_debits", []):
            return False
        raise InsufficientWallet(f"Wallet balance Rs.{doc.get('wallet_balance', 0):.2f} is less than Rs.{amount:.2f}")

    @remote
    def grant_referral_reward(self, owner_id: str) -> bool:
        """Flip first_order_completed and reward the referrer. No-op when already granted."""
        doc = self.db["profile"].find_one_and_update(
            {"_id": owner_id, "first_order_completed": {"$ne": True}},
            {"$set": {"first_order_completed": True, "updated_at": datetime.now(timezone.utc)}},
        )
        if not doc:
            return False
        referrer_code = doc.get("referred_by")
        if referrer_code:
            try:
                self.db["profile"].update_one(
                    {"referral_code": referrer_code},
                    {"$inc": {"wallet_balance": config.REFERRAL_REWARD, "referral_count": 1}},
                )
            except PyMongoError:
                # first_order_completed is already set, so a retry will not grant it
                logger.error(
                    f"Referral reward of Rs.{config.REFERRAL_REWARD:.0f} for {referrer_code} "
                    f"(referred {owner_id}) was not credited; reconcile manually"
                )
                raise
            logger.info(f"Referral reward of Rs.{config.REFERRAL_REWARD:.0f} granted to {referrer_code}")
        return True

    # Orders

    def _next_order_number(self, now: datetime) -> str:
        counter = self.db["counter"].find_one_and_update(
            {"_id": "order_number"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return f"FC{now:%Y%m%d}{counter['seq']:05d}"

    @remote
    def create_order(self, fields: dict) -> Order:
        now = datetime.now(timezone.utc)
        doc = dict(fields)
        doc["order_number"] = self._next_order_number(now)
        doc["expected_delivery"] = doc["expected_delivery"].isoformat()
        doc["created_at"] = now
        order_id = create_document("order", doc, database=self.db)
        return self.read_order(order_id)

    @remote
    def create_order_lines(self, order_id: str, lines: List[OrderLine]) -> None:
        docs = []
        now = datetime.now(timezone.utc)
        for line in lines:
            doc = line.model_dump()
            doc["order_id"] = order_id
            doc["created_at"] = now
            docs.append(doc)
        if docs:
            self.db["order_item"].insert_many(docs)

    @remote
    def update_order_status(self, order_id: str, status, payment_status, expected_status=None, payment_id: Optional[str] = None) -> Order:
        """Set status and payment status.

        With `expected_status` the write only applies if the order is still in
        that status, so two concurrent transitions cannot both win.
        """
        oid = to_object_id(order_id)
        query = {"_id": oid}
        if expected_status is not None:
            query["status"] = getattr(expected_status, "value", expected_status)
        update = {
            "status": getattr(status, "value", status),
            "payment_status": getattr(payment_status, "value", payment_status),
            "updated_at": datetime.now(timezone.utc),
        }
        if payment_id is not None:
            update["payment_id"] = payment_id
        res = self.db["order"].update_one(query, {"$set": update})
        if res.matched_count == 0:
            current = self.db["order"].find_one({"_id": oid}, {"status": 1}) if oid else None
            if not current:
                raise NotFound("Order not found")
            raise InvalidTransition(current["status"], update["status"])
        logger.info(f"Order {order_id} is now {update['status']} (payment {update['payment_status']})")
        return self.read_order(order_id)

    @remote
    def read_order(self, order_id: str) -> Order:
        oid = to_object_id(order_id)
        doc = self.db["order"].find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("Order not found")
        return Order(**to_str_id(doc))

    @remote
    def read_order_lines(self, order_id: str) -> List[OrderLine]:
        docs = self.db["order_item"].find({"order_id": order_id}).sort("_id", ASCENDING)
        lines = []
        for d in docs:
            d.pop("_id", None)
            lines.append(OrderLine(**d))
        return lines

    @remote
    def list_orders(self, owner_id: str, limit: Optional[int] = None) -> List[Order]:
        docs = self.db["order"].find({"user_id": owner_id}).sort("created_at", -1)
        if limit:
            docs = docs.limit(limit)
        return [Order(**to_str_id(d)) for d in docs]
