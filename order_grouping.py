"""Group pending order rows into one entry per customer per day for the admin view."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from cart import to_money


@dataclass
class OrderGroup:
    customer_name: str
    phone_number: str
    created_at: datetime
    orders: List[dict] = field(default_factory=list)
    total: Decimal = Decimal("0.00")

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "phone_number": self.phone_number,
            "created_at": self.created_at.isoformat(),
            "orders": self.orders,
            "total": str(self.total),
        }


def _created_at(order: dict) -> datetime:
    value = order["created_at"]
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def group_orders(orders: Iterable[dict]) -> List[OrderGroup]:
    """Orders sharing customer name, phone number and calendar day end up in one group.

    Groups come back in the order their first member was seen. The input
    rows are referenced, never modified.
    """
    groups: Dict[Tuple[str, str, date], OrderGroup] = {}
    for order in orders:
        created_at = _created_at(order)
        key = (order["customer_name"], order["phone_number"], created_at.date())
        group = groups.get(key)
        if group is None:
            group = groups[key] = OrderGroup(
                customer_name=order["customer_name"],
                phone_number=order["phone_number"],
                created_at=created_at,
            )
        elif created_at < group.created_at:
            group.created_at = created_at
        group.orders.append(order)
        group.total += to_money(order["total_price"])
    return list(groups.values())
