"""Errors raised by the order service's use cases and storage."""

from __future__ import annotations


class OrderServiceError(Exception):
    """Base class for the service's domain errors."""

    default_message = "order service error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NoItemsInOrderError(OrderServiceError, ValueError):
    default_message = "no items in order"


class InvalidUserIDError(OrderServiceError, ValueError):
    default_message = "invalid user ID"


class InvalidOrderIDError(OrderServiceError, ValueError):
    default_message = "invalid order ID"


class NoOrderFoundError(OrderServiceError, LookupError):
    default_message = "no order found"


class NotFoundError(OrderServiceError, LookupError):
    default_message = "no found"