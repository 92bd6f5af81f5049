"""
Database Schemas for the bakery storefront

Each Pydantic model maps to a MongoDB collection (lowercased class name).

Collections:
- product
- order
"""
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_PRODUCT_IMAGES = 5
MIN_PRICE = Decimal("0.01")


def check_price(value: float) -> float:
    """Prices are whole cents, at least one cent."""
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidOperation
        in_cents = amount == amount.quantize(MIN_PRICE)
    except InvalidOperation:
        raise ValueError("Price must be a number")
    if amount < MIN_PRICE:
        raise ValueError("Price must be at least 0.01")
    if not in_cents:
        raise ValueError("Price can have at most 2 decimal places")
    return value


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., gt=0, description="Price in USD")
    description: Optional[str] = Field(None, description="Product description")
    images: List[str] = Field(
        default_factory=list,
        max_length=MAX_PRODUCT_IMAGES,
        description="Public image URLs, first one is the primary image",
    )

    @field_validator("price")
    @classmethod
    def price_in_cents(cls, value):
        return check_price(value)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"

    One document per cart line of a paid checkout.
    """
    customer_name: str
    phone_number: str
    product_name: str
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., gt=0)
    total_price: float = Field(..., gt=0, description="unit_price x quantity")
    is_completed: bool = Field(False, description="Set by the admin once fulfilled")
    payment_id: str
    payment_status: Optional[str] = None
    payment_amount: float
    payment_method: str = "paypal"


# Request models

class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    description: Optional[str] = None

    @field_validator("price")
    @classmethod
    def price_in_cents(cls, value):
        return check_price(value)


class AddItemRequest(BaseModel):
    product_id: str


class SetQuantityRequest(BaseModel):
    quantity: int


class CustomerInfoRequest(BaseModel):
    customer_name: str = ""
    phone_number: str = ""


class PaymentDetails(BaseModel):
    """What the payment widget reports after capturing a payment."""
    id: str = Field(..., min_length=1)
    status: Optional[str] = None
    payment_method: str = "paypal"


class LoginRequest(BaseModel):
    username: str
    password: str
