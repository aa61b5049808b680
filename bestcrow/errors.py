"""Exception hierarchy for bestcrow.

Transport errors are retried, decode errors are skipped, duplicates are not
errors at all, and impossible flag combinations surface as the ``unknown``
status instead of an exception.
"""

from typing import Optional


class BestcrowError(Exception):
    """Base class for bestcrow errors."""


class ConfigurationError(BestcrowError):
    """Settings are inconsistent or incomplete."""


class TransportError(BestcrowError):
    """RPC or log-subscription failure; always retriable."""


class DecodeError(BestcrowError):
    """A log entry could not be mapped to a domain event."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
        log_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.block_number = block_number
        self.log_index = log_index


class EscrowNotFoundError(BestcrowError):
    """No projection exists for the requested escrow key."""


class AccessDeniedError(BestcrowError):
    """Viewer is neither depositor nor receiver of the escrow."""


class InvalidAmountError(BestcrowError, ValueError):
    """Amount or basis points are not non-negative integers."""
