"""
Custom exceptions for the FeedSync application.
"""

from fastapi import HTTPException, status


class StoreError(Exception):
    """Raised when a storage operation fails and its transaction was rolled back."""


class FeedParseError(Exception):
    """Raised when raw feed content cannot be turned into items."""


class ItemNotFoundError(HTTPException):
    """Raised when an item is not found."""
    def __init__(self, detail: str = "Item not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class FeedNotFoundError(HTTPException):
    """Raised when a feed is not found."""
    def __init__(self, detail: str = "Feed not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
