"""Shopping cart held inside a checkout session."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    # str() first so float prices keep their printed value
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class CartLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int = 1

    @property
    def line_total(self) -> Decimal:
        return (self.price * self.quantity).quantize(CENTS, rounding=ROUND_HALF_UP)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "line_total": str(self.line_total),
        }


class Cart:
    """
    Product id -> CartLine, in the order products were first added.

    Every mutation calls `on_change` so whoever owns the cart can drop state
    that was derived from the old contents (a prepared payment, for one).
    """

    def __init__(self, on_change: Optional[Callable[[], None]] = None):
        self._lines: Dict[str, CartLine] = {}
        self._on_change = on_change

    def _changed(self):
        if self._on_change is not None:
            self._on_change()

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def count(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def add_item(self, product: dict) -> CartLine:
        product_id = str(product["id"])
        line = self._lines.get(product_id)
        if line:
            line.quantity += 1
        else:
            line = CartLine(
                product_id=product_id,
                name=product["name"],
                price=to_money(product["price"]),
            )
            self._lines[product_id] = line
        self._changed()
        return line

    def remove_item(self, product_id: str):
        self._lines.pop(product_id, None)
        self._changed()

    def set_quantity(self, product_id: str, quantity: int):
        if quantity < 1:
            self.remove_item(product_id)
            return
        line = self._lines.get(product_id)
        if line:
            line.quantity = quantity
        self._changed()

    def clear(self):
        self._lines.clear()
        self._changed()

    def total(self) -> Decimal:
        total = sum((line.price * line.quantity for line in self._lines.values()), Decimal("0"))
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self._lines.values()],
            "count": self.count,
            "total": str(self.total()),
        }
