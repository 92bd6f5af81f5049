"""Validation rules on the stored models."""

import pytest
from pydantic import ValidationError

from schemas import Product, check_price


@pytest.mark.parametrize("price", [0.01, 7.25, 8.5, 12])
def test_whole_cent_prices_accepted(price):
    assert check_price(price) == price


@pytest.mark.parametrize("price", [0, -1, 0.004, 1.234, float("nan"), float("inf")])
def test_other_prices_rejected(price):
    with pytest.raises(ValueError):
        check_price(price)


def test_product_price_checked():
    with pytest.raises(ValidationError):
        Product(name="Sample bite", price=0.004)
