"""Tests for fee and collateral arithmetic."""

import pytest

from bestcrow.errors import InvalidAmountError
from bestcrow.fees import BPS_DENOMINATOR, FeeEngine, bps_of
from bestcrow.testing.fakes import ONE_ETHER


class TestBpsOf:
    def test_one_ether_fee(self):
        assert bps_of(ONE_ETHER, 50) == 5_000_000_000_000_000

    def test_one_ether_collateral(self):
        assert bps_of(ONE_ETHER, 5000) == 500_000_000_000_000_000

    def test_truncates_like_integer_division(self):
        # 199 * 50 / 10000 = 0.995
        assert bps_of(199, 50) == 0
        assert bps_of(200, 50) == 1
        assert bps_of(399, 50) == 1

    def test_no_precision_loss_at_uint256_scale(self):
        amount = 2**256 - 1
        assert bps_of(amount, 50) == amount * 50 // BPS_DENOMINATOR

    def test_zero(self):
        assert bps_of(0, 50) == 0
        assert bps_of(ONE_ETHER, 0) == 0

    @pytest.mark.parametrize("bad", [-1, 1.5, "100", True, None])
    def test_rejects_non_uint_amounts(self, bad):
        with pytest.raises(InvalidAmountError):
            bps_of(bad, 50)

    def test_invalid_amount_is_value_error(self):
        with pytest.raises(ValueError):
            bps_of(-5, 50)


class TestFeeEngine:
    def test_defaults(self):
        engine = FeeEngine()
        assert engine.fee_bps == 50
        assert engine.collateral_bps == 5000

    def test_quote(self):
        quote = FeeEngine(fee_bps=50, collateral_bps=5000).quote(ONE_ETHER)
        assert quote.amount == ONE_ETHER
        assert quote.fee == 5_000_000_000_000_000
        assert quote.collateral == 500_000_000_000_000_000
        assert quote.creation_total == ONE_ETHER + 5_000_000_000_000_000
        assert quote.acceptance_total == 500_000_000_000_000_000

    def test_custom_rates(self):
        engine = FeeEngine(fee_bps=100, collateral_bps=10_000)
        assert engine.fee(10_000) == 100
        assert engine.collateral(10_000) == 10_000

    def test_rejects_negative_bps(self):
        with pytest.raises(InvalidAmountError):
            FeeEngine(fee_bps=-1)
