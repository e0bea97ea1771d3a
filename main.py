import hmac
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
from backend import Backend
from database import db
from errors import (
    CouponRejected,
    FreshCartError,
    InsufficientWallet,
    InvalidTransition,
    NetworkError,
    NotFound,
    PersistenceError,
    StockConflict,
    Unauthenticated,
    ValidationError,
)
from coupons import CouponEvaluator
from order_status import OrderService, status_index
from orders import OrderOrchestrator
from schemas import (
    CartSnapshot,
    Category,
    CheckoutRequest,
    CheckoutResult,
    CouponResult,
    DeliveryInfo,
    Order,
    OrderLine,
    OrderStatus,
    Product,
    Profile,
)
from session import ShopperSession
from stock import StockVerifier

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("freshcart.api")

app = FastAPI(title="FreshCart API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    Unauthenticated: 401,
    ValidationError: 422,
    StockConflict: 409,
    CouponRejected: 400,
    NetworkError: 503,
    PersistenceError: 500,
    NotFound: 404,
    InvalidTransition: 409,
    InsufficientWallet: 409,
}


@app.exception_handler(FreshCartError)
def handle_freshcart_error(request, exc: FreshCartError):
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    logger.warning(f"{request.method} {request.url.path} failed with {type(exc).__name__}: {exc.message}")
    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ValidationError):
        body["field"] = exc.field
    if getattr(exc, "deducted", None):
        body["deducted"] = [{"product_id": pid, "quantity_kg": qty} for pid, qty in exc.deducted]
    return JSONResponse(status_code=status_code, content=body)


# Dependencies

def get_backend() -> Backend:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return Backend(db)


def get_session(x_user_id: Optional[str] = Header(None), backend: Backend = Depends(get_backend)) -> ShopperSession:
    return ShopperSession(backend, x_user_id)


def require_session(session: ShopperSession = Depends(get_session)) -> ShopperSession:
    session.require_owner()
    return session


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    if not x_admin_token:
        raise HTTPException(status_code=401, detail="Admin credentials required")
    if not config.ADMIN_TOKEN or not hmac.compare_digest(x_admin_token, config.ADMIN_TOKEN):
        raise HTTPException(status_code=403, detail="Admin access denied")


# Request bodies

class CartAdd(BaseModel):
    product_id: str
    quantity_kg: float


class CartUpdate(BaseModel):
    quantity_kg: float


class CouponCheck(BaseModel):
    code: str
    order_amount: Optional[float] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class PaymentUpdate(BaseModel):
    payment_id: str
    success: bool = True


class OrderDetail(BaseModel):
    order: Order
    items: List[OrderLine]
    status_index: int


class AccountView(BaseModel):
    profile: Profile
    recent_orders: List[Order]


MIN_SEARCH_LENGTH = 2
RECENT_ORDERS = 5


@app.on_event("startup")
def create_indexes():
    if db is None:
        return
    Backend(db).ensure_indexes()


@app.get("/")
def read_root():
    return {"message": "FreshCart API Running"}


# Catalog

@app.get("/categories", response_model=List[Category])
def list_categories(backend: Backend = Depends(get_backend)):
    return backend.read_categories()


@app.get("/categories/{slug}/products", response_model=List[Product])
def list_category_products(slug: str, backend: Backend = Depends(get_backend)):
    category = backend.read_category(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return backend.read_products({"category_id": category.id, "is_available": True})


@app.get("/products", response_model=List[Product])
def list_products(
    featured: Optional[bool] = None,
    q: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=100),
    backend: Backend = Depends(get_backend),
):
    filter_dict = {"is_available": True}
    if featured is not None:
        filter_dict["is_featured"] = featured
    if q is None:
        return backend.read_products(filter_dict, limit=limit)
    q = q.strip()
    if len(q) < MIN_SEARCH_LENGTH:
        return []
    return backend.search_products(q, filter_dict, limit=limit)


@app.get("/products/{product_id}", response_model=Product)
def get_product(product_id: str, backend: Backend = Depends(get_backend)):
    product = backend.read_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/products/{product_id}/stock")
def get_stock(product_id: str, backend: Backend = Depends(get_backend)):
    stock = backend.read_stock(product_id)
    if stock is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product_id": product_id, "stock_kg": stock, "refresh_seconds": config.STOCK_REFRESH_SECONDS}


@app.get("/delivery/{pin_code}", response_model=DeliveryInfo)
def check_delivery(pin_code: str, backend: Backend = Depends(get_backend)):
    if len(pin_code) != 6 or not pin_code.isdigit():
        raise HTTPException(status_code=422, detail="Please enter a valid 6-digit pin code")
    info = backend.read_delivery_info(pin_code)
    if not info:
        raise HTTPException(status_code=404, detail="Sorry, we do not deliver to this area yet")
    return info


# Cart

@app.get("/cart", response_model=CartSnapshot)
def get_cart(session: ShopperSession = Depends(get_session)):
    return session.cart.snapshot()


@app.get("/cart/issues")
def get_cart_issues(session: ShopperSession = Depends(require_session)):
    snapshot = session.refresh_cart()
    issues = StockVerifier(session.backend).cart_issues(snapshot.items)
    return {"issues": issues, "can_checkout": bool(snapshot.items) and not issues}


@app.post("/cart", response_model=CartSnapshot)
def add_to_cart(payload: CartAdd, session: ShopperSession = Depends(get_session)):
    owner = session.require_owner()
    in_cart = sum(l.quantity_kg for l in session.backend.read_cart(owner) if l.product_id == payload.product_id)
    StockVerifier(session.backend).check_addition(payload.product_id, in_cart, payload.quantity_kg)
    session.add_to_cart(payload.product_id, payload.quantity_kg)
    return session.snapshot


@app.put("/cart/{line_id}", response_model=CartSnapshot)
def update_cart_line(line_id: str, payload: CartUpdate, session: ShopperSession = Depends(require_session)):
    line = session.cart.line(line_id)
    if payload.quantity_kg > line.quantity_kg:
        StockVerifier(session.backend).check_quantity_change(line.product_id, payload.quantity_kg)
    session.set_quantity(line_id, payload.quantity_kg)
    return session.snapshot


@app.delete("/cart/{line_id}", response_model=CartSnapshot)
def remove_cart_line(line_id: str, session: ShopperSession = Depends(require_session)):
    if not session.remove_from_cart(line_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return session.snapshot


@app.delete("/cart")
def clear_cart(session: ShopperSession = Depends(require_session)):
    return {"deleted": session.clear_cart()}


# Coupons and checkout

@app.post("/coupons/evaluate", response_model=CouponResult)
def evaluate_coupon(payload: CouponCheck, session: ShopperSession = Depends(require_session)):
    order_amount = payload.order_amount
    if order_amount is None:
        order_amount = session.refresh_cart().subtotal
    return CouponEvaluator(session.backend).evaluate(payload.code, order_amount)


@app.post("/checkout", response_model=CheckoutResult)
def checkout(payload: CheckoutRequest, session: ShopperSession = Depends(require_session)):
    return OrderOrchestrator(session.backend).place_order(session, payload)


# Orders

def _owned_order(session: ShopperSession, order_id: str) -> Order:
    order = session.backend.read_order(order_id)
    if order.user_id != session.owner_id:
        raise NotFound("Order not found")
    return order


@app.get("/orders", response_model=List[Order])
def list_orders(session: ShopperSession = Depends(require_session)):
    return session.backend.list_orders(session.owner_id)


@app.get("/orders/{order_id}", response_model=OrderDetail)
def get_order(order_id: str, session: ShopperSession = Depends(require_session)):
    order = _owned_order(session, order_id)
    return {
        "order": order,
        "items": session.backend.read_order_lines(order_id),
        "status_index": status_index(order.status),
    }


@app.post("/orders/{order_id}/status", response_model=Order, dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusUpdate, backend: Backend = Depends(get_backend)):
    return OrderService(backend).advance(order_id, payload.status)


@app.post("/orders/{order_id}/cancel", response_model=Order)
def cancel_order(order_id: str, session: ShopperSession = Depends(require_session)):
    _owned_order(session, order_id)
    return OrderService(session.backend).cancel(order_id)


@app.post("/orders/{order_id}/payment", response_model=Order)
def record_payment(order_id: str, payload: PaymentUpdate, session: ShopperSession = Depends(require_session)):
    _owned_order(session, order_id)
    return OrderService(session.backend).confirm_payment(order_id, payload.payment_id, payload.success)


@app.get("/profile", response_model=AccountView)
def get_profile(session: ShopperSession = Depends(require_session)):
    return {
        "profile": session.refresh_profile(),
        "recent_orders": session.backend.list_orders(session.owner_id, limit=RECENT_ORDERS),
    }


@app.get("/health")
def health(backend: Backend = Depends(get_backend)):
    if not backend.ping():
        raise NetworkError("Could not reach the store. Please try again.")
    return {"status": "ok", "database": backend.db.name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
