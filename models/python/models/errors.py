from typing import Optional


def format_price(value: float) -> str:
    """Render a price without trailing zeros: 40.0 -> "40", 40.50 -> "40.5"."""
    return f"{value:.2f}".rstrip("0").rstrip(".")


class AuctionError(Exception):
    """Base exception for item, bid and close operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidAmount(AuctionError):
    """Raised when a bid amount is not a finite positive number."""


class NotFound(AuctionError):
    """Raised when the referenced item does not exist."""


class AuctionClosed(AuctionError):
    """Raised when bidding on an item that is closed or past its deadline."""


class BidTooLow(AuctionError):
    """Raised when a bid does not exceed the item's effective price."""

    def __init__(self, current_price: float, message: Optional[str] = None) -> None:
        super().__init__(message or f"Bid must be higher than ${format_price(current_price)}")
        self.current_price = current_price


class Forbidden(AuctionError):
    """Raised when the caller is not allowed to perform an admin action."""


class AlreadyClosed(AuctionError):
    """Raised when closing an item that is already closed."""


class ValidationError(AuctionError):
    """Raised when item creation input is missing or malformed."""


class StorageError(AuctionError):
    """Raised when the document store fails or keeps conflicting."""
