"""Rate limiting configuration for the bestcrow API.

Requests carrying a wallet header are limited per wallet, anonymous ones
per client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import get_settings


def get_rate_limit_key(request) -> str:
    """Wallet address when present, otherwise the direct client IP."""
    wallet = request.headers.get("x-wallet-address")
    if wallet:
        return f"wallet:{wallet.strip().lower()}"
    return get_remote_address(request)


def default_rate_limit() -> str:
    return get_settings().rate_limit


limiter = Limiter(key_func=get_rate_limit_key)
