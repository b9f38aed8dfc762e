"""Checkout form models: delivery preferences and shipping details.

Both accept the camelCase field names the storefront forms post
(``fullName``, ``zipCode``, ``deliveryTime``) as well as snake_case.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

MIN_PHONE_DIGITS = 10

DISTRICTS = [
    "Kampala Central",
    "Kawempe",
    "Makindye",
    "Nakawa",
    "Rubaga",
    "Wakiso",
    "Mukono",
    "Entebbe",
    "Other",
]


class DeliveryTime(str, enum.Enum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    ANY = "Any"


def _check_phone(value: str) -> str:
    digits = sum(ch.isdigit() for ch in value)
    if digits < MIN_PHONE_DIGITS:
        raise ValueError(f"Phone number must be at least {MIN_PHONE_DIGITS} digits.")
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _CheckoutForm(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class DeliveryPreferences(_CheckoutForm):
    """Contact and timing preferences for pay-on-delivery orders."""

    phone: str
    district: str = Field(min_length=2)
    email: EmailStr | None = None
    city: str | None = None
    delivery_time: DeliveryTime = DeliveryTime.ANY

    @field_validator("email", "city", mode="before")
    @classmethod
    def _optional_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("phone")
    @classmethod
    def _phone_digits(cls, value: str) -> str:
        return _check_phone(value)


class ShippingInfo(_CheckoutForm):
    """Where the order goes and who receives it."""

    full_name: str = Field(min_length=3)
    email: EmailStr
    address: str = Field(min_length=5)
    city: str = Field(min_length=2)
    zip_code: str = Field(min_length=4)
    phone: str
    notes: str | None = None

    @field_validator("notes", mode="before")
    @classmethod
    def _optional_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("phone")
    @classmethod
    def _phone_digits(cls, value: str) -> str:
        return _check_phone(value)
