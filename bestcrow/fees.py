"""Protocol fee and collateral arithmetic.

Integer-only: results must match the contract's truncating division bit
for bit, so no float or Decimal ever enters the calculation.
"""

from dataclasses import dataclass

from .errors import InvalidAmountError

BPS_DENOMINATOR = 10_000
DEFAULT_FEE_BPS = 50
DEFAULT_COLLATERAL_BPS = 5_000


def _check_uint(value, name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must be non-negative, got {value}")
    return value


def bps_of(amount: int, bps: int) -> int:
    """floor(amount * bps / 10000)."""
    _check_uint(amount, "amount")
    _check_uint(bps, "basis points")
    return (amount * bps) // BPS_DENOMINATOR


@dataclass(frozen=True)
class FeeQuote:
    """Value required from each party for one escrow amount."""

    amount: int
    fee: int
    collateral: int

    @property
    def creation_total(self) -> int:
        """Value the depositor sends when creating: amount + fee."""
        return self.amount + self.fee

    @property
    def acceptance_total(self) -> int:
        """Value the receiver locks when accepting: the collateral alone."""
        return self.collateral


class FeeEngine:
    """Computes protocol fee and receiver collateral from basis points."""

    def __init__(self, fee_bps: int = DEFAULT_FEE_BPS, collateral_bps: int = DEFAULT_COLLATERAL_BPS):
        self.fee_bps = _check_uint(fee_bps, "fee_bps")
        self.collateral_bps = _check_uint(collateral_bps, "collateral_bps")

    def fee(self, amount: int) -> int:
        return bps_of(amount, self.fee_bps)

    def collateral(self, amount: int) -> int:
        return bps_of(amount, self.collateral_bps)

    def quote(self, amount: int) -> FeeQuote:
        return FeeQuote(amount=amount, fee=self.fee(amount), collateral=self.collateral(amount))
