"""Coupon evaluation for checkout."""

import logging
from typing import Optional

from errors import CouponRejected, ValidationError
from schemas import CouponResult

logger = logging.getLogger("freshcart.coupons")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class CouponEvaluator:
    def __init__(self, backend):
        self.backend = backend

    def evaluate(self, code: str, order_amount: float) -> CouponResult:
        code = normalize_code(code)
        if not code:
            raise ValidationError("coupon_code", "Please enter a coupon code")
        result = self.backend.evaluate_coupon(code, order_amount)
        if not result.valid:
            logger.info(f"Coupon {code} rejected for Rs.{order_amount:.2f}: {result.message}")
        return result

    def require(self, code: str, order_amount: float) -> CouponResult:
        result = self.evaluate(code, order_amount)
        if not result.valid:
            raise CouponRejected(result.message or "Invalid coupon")
        return result


class CouponSelection:
    """The coupon a shopper applied, valid only for the cart it was priced against."""

    def __init__(self):
        self.code: Optional[str] = None
        self.result: Optional[CouponResult] = None
        self.order_amount: Optional[float] = None

    def apply(self, evaluator: CouponEvaluator, code: str, order_amount: float) -> CouponResult:
        result = evaluator.evaluate(code, order_amount)
        if result.valid:
            self.code = normalize_code(code)
            self.result = result
            self.order_amount = order_amount
        else:
            self.invalidate()
        return result

    def invalidate(self):
        self.code = None
        self.result = None
        self.order_amount = None

    @property
    def discount(self) -> float:
        return self.result.discount if self.result and self.result.valid else 0.0

    def is_current(self, order_amount: float) -> bool:
        return self.result is not None and self.order_amount == order_amount
