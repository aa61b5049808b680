"""Viewer identification.

The caller names its wallet in the ``X-Wallet-Address`` header. Detail and
history endpoints only serve escrows where that wallet is a participant.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from ..types import normalize_address


def get_viewer(x_wallet_address: Annotated[str | None, Header()] = None) -> str:
    """Normalized wallet address of the caller.

    Raises:
        HTTPException: 401 if the header is missing, 400 if it is not an address
    """
    if not x_wallet_address:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Wallet-Address header required",
        )
    try:
        return normalize_address(x_wallet_address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


Viewer = Annotated[str, Depends(get_viewer)]
