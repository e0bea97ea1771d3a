"""Tests for coupon evaluation and wallet credit."""

import pytest

from coupons import CouponEvaluator, CouponSelection, normalize_code
from errors import CouponRejected, ValidationError
from wallet import WalletLedger, usable_credit


class TestCouponEvaluator:
    def test_code_is_normalized(self, backend, make_coupon):
        make_coupon("FRESH100")
        assert normalize_code("  fresh100 ") == "FRESH100"
        assert CouponEvaluator(backend).evaluate(" fresh100", 800).valid is True

    def test_empty_code(self, backend):
        with pytest.raises(ValidationError):
            CouponEvaluator(backend).evaluate("   ", 800)

    def test_require_raises_on_rejection(self, backend, make_coupon):
        make_coupon("OLD", is_active=False)
        with pytest.raises(CouponRejected, match="no longer active"):
            CouponEvaluator(backend).require("OLD", 800)

    def test_selection_tracks_amount(self, backend, make_coupon):
        make_coupon("FRESH100")
        selection = CouponSelection()
        selection.apply(CouponEvaluator(backend), "fresh100", 800)
        assert selection.discount == 100
        assert selection.is_current(800)
        assert not selection.is_current(900)

    def test_rejected_apply_clears_selection(self, backend, make_coupon):
        make_coupon("FRESH100")
        make_coupon("BIG", min_order_amount=5000)
        selection = CouponSelection()
        selection.apply(CouponEvaluator(backend), "FRESH100", 800)
        result = selection.apply(CouponEvaluator(backend), "BIG", 800)
        assert result.valid is False
        assert selection.code is None
        assert selection.discount == 0


class TestWallet:
    @pytest.mark.parametrize("balance,payable,expected", [
        (2000, 940, 940),
        (100, 940, 100),
        (0, 290, 0),
        (500, -50, 0),
    ])
    def test_usable_credit(self, balance, payable, expected):
        assert usable_credit(balance, payable) == expected

    def test_disabled_wallet(self):
        assert usable_credit(2000, 940, use_wallet=False) == 0

    def test_zero_amount_is_not_debited(self, backend, make_profile, monkeypatch):
        owner = make_profile(wallet_balance=100.0)
        calls = []
        monkeypatch.setattr(backend, "debit_wallet", lambda *args: calls.append(args))
        assert WalletLedger(backend).debit(owner, 0, "order-1") is False
        assert calls == []

    def test_retry_debits_once(self, backend, make_profile):
        owner = make_profile(wallet_balance=100.0)
        ledger = WalletLedger(backend)
        assert ledger.debit(owner, 60.0, "order-1") is True
        assert ledger.debit(owner, 60.0, "order-1") is False
        assert backend.read_profile(owner).wallet_balance == 40.0
