"""
PayPal buttons configuration.

The buttons run in the shopper's browser and talk to PayPal directly. The
server only tells the page how to load the SDK and what to put in the
purchase unit, then receives the approve/error/cancel callbacks.
"""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from urllib.parse import urlencode

PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_CURRENCY = os.getenv("PAYPAL_CURRENCY", "USD")
PAYPAL_SDK_URL = "https://www.paypal.com/sdk/js"


@dataclass
class PaymentCapability:
    client_id: Optional[str]
    currency: str = "USD"
    intent: str = "capture"
    enable_funding: List[str] = field(default_factory=lambda: ["venmo"])
    disable_funding: List[str] = field(default_factory=lambda: ["credit", "card"])

    @property
    def ready(self) -> bool:
        return bool(self.client_id)

    def sdk_url(self) -> Optional[str]:
        if not self.ready:
            return None
        params = {
            "client-id": self.client_id,
            "currency": self.currency,
            "intent": self.intent,
        }
        if self.enable_funding:
            params["enable-funding"] = ",".join(self.enable_funding)
        if self.disable_funding:
            params["disable-funding"] = ",".join(self.disable_funding)
        return f"{PAYPAL_SDK_URL}?{urlencode(params, safe=',')}"

    def purchase_unit(self, amount: Decimal, item_count: int, correlation_id: Optional[str] = None) -> dict:
        """Purchase unit handed to `actions.order.create` by the buttons."""
        if correlation_id is None:
            correlation_id = new_correlation_id()
        return {
            "amount": {
                "value": f"{amount:.2f}",
                "currency_code": self.currency,
            },
            "description": f"Order for {item_count} item{'s' if item_count != 1 else ''}",
            "custom_id": correlation_id,
        }

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "sdk_url": self.sdk_url(),
            "currency": self.currency,
            "intent": self.intent,
            "enable_funding": self.enable_funding,
            "disable_funding": self.disable_funding,
        }


def new_correlation_id() -> str:
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"order_{millis}"


def capability_from_env() -> PaymentCapability:
    return PaymentCapability(client_id=PAYPAL_CLIENT_ID, currency=PAYPAL_CURRENCY)
