"""
Database Schemas for FreshCart

Each Pydantic model represents a collection in your database.
Model name is converted to lowercase for the collection name:
- Category -> "category"
- Product -> "product"
- CartLine -> "cart_item"
- Order -> "order"
- OrderLine -> "order_item"

Quantities are in kilograms, prices in rupees.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

# Stock and quantities are tracked to the gram
KG_PLACES = 3


def round_kg(value) -> float:
    return round(float(value), KG_PLACES)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    COD = "cod"

    @property
    def needs_confirmation(self) -> bool:
        """Card and UPI payments are only settled once the gateway confirms them."""
        return self is not PaymentMethod.COD


class DiscountType(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"


class StockState(str, Enum):
    SUFFICIENT = "sufficient"
    INSUFFICIENT = "insufficient"
    MISSING = "missing"


class Vendor(BaseModel):
    id: str = Field(..., description="Vendor ID")
    name: str = Field(..., description="Vendor display name")
    logo_url: Optional[str] = Field(None, description="Logo URL")
    is_active: bool = Field(True, description="Whether the vendor is selling")


class Category(BaseModel):
    id: str = Field(..., description="Category ID")
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="URL slug")
    icon: Optional[str] = None
    image_url: Optional[str] = None
    display_order: int = Field(0, description="Position in category listings")
    product_count: int = Field(0, ge=0, description="Available products in the category")


class Product(BaseModel):
    id: str = Field(..., description="Product ID")
    vendor_id: Optional[str] = Field(None, description="Vendor ID")
    category_id: Optional[str] = Field(None, description="Category ID")
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Short description")
    image_url: Optional[str] = Field(None, description="Image URL")
    price_per_kg: float = Field(..., ge=0, description="Price per kg")
    stock_kg: float = Field(0, ge=0, description="Kilograms in stock")
    min_order_kg: float = Field(0.5, gt=0, description="Smallest orderable quantity")
    is_featured: bool = Field(False, description="Shown on the home page")
    is_available: bool = Field(True, description="Listed for sale")
    vendor_name: Optional[str] = Field(None, description="Joined vendor name")


class CartLine(BaseModel):
    id: str = Field(..., description="Cart line ID")
    user_id: str = Field(..., description="Owner of the cart")
    product_id: str = Field(..., description="Product ID")
    quantity_kg: float = Field(..., gt=0, description="Requested quantity")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CartItemView(BaseModel):
    """A cart line joined with the product and vendor display data."""
    line: CartLine
    product: Optional[Product] = None

    @property
    def line_total(self) -> float:
        if self.product is None:
            return 0.0
        return self.product.price_per_kg * self.line.quantity_kg


class CartSnapshot(BaseModel):
    items: List[CartItemView] = Field(default_factory=list)
    subtotal: float = 0.0
    count: int = 0


class Coupon(BaseModel):
    code: str = Field(..., description="Upper-case coupon code")
    description: Optional[str] = None
    discount_type: DiscountType = Field(..., description="flat or percent")
    discount_value: float = Field(..., ge=0, description="Amount or percentage")
    min_order_amount: float = Field(0, ge=0, description="Minimum subtotal")
    max_discount: Optional[float] = Field(None, ge=0, description="Cap for percent coupons")
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=0, description="None means unlimited")
    used_count: int = Field(0, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CouponResult(BaseModel):
    valid: bool
    discount: float = 0.0
    message: str = ""


class Profile(BaseModel):
    id: str = Field(..., description="Owner identity")
    full_name: Optional[str] = None
    phone: Optional[str] = None
    referral_code: Optional[str] = Field(None, description="Unique referral code")
    referred_by: Optional[str] = Field(None, description="Referral code of the referrer")
    wallet_balance: float = Field(0, ge=0)
    referral_count: int = Field(0, ge=0)
    first_order_completed: bool = False


class DeliveryAddress(BaseModel):
    full_name: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    state: str = ""
    pin_code: str = ""


class DeliveryInfo(BaseModel):
    pin_code: str
    area_name: str = ""
    city: str = ""
    is_active: bool = True
    delivery_charge: float = Field(0, ge=0)


class StockDeductionResult(BaseModel):
    success: bool
    product_name: str = ""
    available_stock: float = 0.0


class StockCheck(BaseModel):
    product_id: str
    product_name: str
    requested_kg: float
    state: StockState
    available_kg: float = 0.0


class OrderLine(BaseModel):
    """Frozen copy of a cart line taken when the order is placed."""
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    product_name: str = Field(..., description="Name at purchase time")
    vendor_name: str = Field(..., description="Vendor name at purchase time")
    image_url: Optional[str] = None
    quantity_kg: float = Field(..., gt=0)
    price_per_kg: float = Field(..., ge=0, description="Price at purchase time")
    total: float = Field(..., ge=0)


class Order(BaseModel):
    id: str
    user_id: str
    order_number: str
    status: OrderStatus = OrderStatus.PENDING
    subtotal: float = Field(..., ge=0)
    delivery_charge: float = Field(..., ge=0)
    coupon_code: Optional[str] = None
    coupon_discount: float = Field(0, ge=0)
    wallet_used: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    delivery_address: DeliveryAddress
    expected_delivery: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CheckoutRequest(BaseModel):
    address: DeliveryAddress
    payment_method: PaymentMethod = PaymentMethod.CARD
    coupon_code: Optional[str] = None
    use_wallet: bool = True
    pin_code: Optional[str] = None


class CheckoutResult(BaseModel):
    order: Order
    lines: List[OrderLine]
    settlement_failures: List[str] = Field(default_factory=list)
    coupon_message: Optional[str] = None
