"""Fee quote routes."""

from fastapi import APIRouter, HTTPException, Request, status

from ...errors import InvalidAmountError
from ..database import Queries
from ..models import FeeQuoteResponse
from ..rate_limit import default_rate_limit, limiter

# len(str(2**256 - 1))
MAX_AMOUNT_DIGITS = 78


def parse_amount(raw: str) -> int:
    """Decimal string in the token's smallest unit to int.

    Raises:
        InvalidAmountError: Unless ``raw`` is ASCII digits within uint256 range
    """
    text = raw.strip()
    if not (text.isascii() and text.isdigit()) or len(text) > MAX_AMOUNT_DIGITS:
        raise InvalidAmountError(f"amount must be a non-negative integer, got {raw[:80]!r}")
    value = int(text)
    if value >= 2**256:
        raise InvalidAmountError("amount exceeds uint256")
    return value


router = APIRouter(prefix="/fees", tags=["fees"])


@router.get("", response_model=FeeQuoteResponse)
@limiter.limit(default_rate_limit)
def get_fee_quote(request: Request, amount: str, queries: Queries):
    """
    Quote protocol fee and receiver collateral for an amount.

    ``amount`` is a decimal integer in the token's smallest unit.
    """
    try:
        quote = queries.quote(parse_amount(amount))
    except InvalidAmountError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return FeeQuoteResponse.from_quote(quote, queries.fee_engine)
