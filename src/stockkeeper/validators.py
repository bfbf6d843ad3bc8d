"""Request-level checks shared by the engine and the HTTP layer."""

from __future__ import annotations

from typing import Any

from django.core.exceptions import ValidationError
from django.core.validators import MaxLengthValidator, RegexValidator

from .exceptions import InvalidInput

ORDER_ID_MAX_LENGTH = 100

order_id_validators = [
    MaxLengthValidator(
        ORDER_ID_MAX_LENGTH,
        message=f"Order ID must be at most {ORDER_ID_MAX_LENGTH} characters",
    ),
    RegexValidator(r"^[A-Za-z0-9_\-.:#]+\Z", message="Order ID contains invalid characters"),
]


def validate_order_id(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidInput("Order ID is required")
    value = value.strip()
    if not value:
        raise InvalidInput("Order ID is required")
    for validator in order_id_validators:
        try:
            validator(value)
        except ValidationError as exc:
            raise InvalidInput(exc.messages[0]) from exc
    return value


def validate_quantity(value: Any, maximum: int) -> int:
    """
    Accept an int, or a string of digits as it arrives from a query string.
    """
    if isinstance(value, bool):
        raise InvalidInput("Quantity must be a positive integer")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal():
            raise InvalidInput("Quantity must be a positive integer")
        value = int(value)
    if not isinstance(value, int) or value < 1:
        raise InvalidInput("Quantity must be a positive integer")
    if value > maximum:
        raise InvalidInput(f"Quantity must be at most {maximum}")
    return value


def validate_contents(values: Any, maximum: int) -> list[str]:
    """Check a batch of already-parsed product contents before upload."""
    if isinstance(values, str) or not isinstance(values, (list, tuple)):
        raise InvalidInput("Products must be a list of strings")
    if not values:
        raise InvalidInput("No products to insert")
    if len(values) > maximum:
        raise InvalidInput(
            f"Too many products. Maximum {maximum} allowed, got {len(values)}"
        )
    cleaned = []
    for index, value in enumerate(values, start=1):
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput(f"Product {index} is empty")
        cleaned.append(value.strip())
    return cleaned
