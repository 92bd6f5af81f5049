"""
Checkout flow for one shopper.

A CheckoutSession owns the cart, the contact info and an explicit
CheckoutState. The state only moves along TRANSITIONS; anything else raises
IllegalTransition. Once a payment is approved the session fans out one order
row per cart line and reports a partial success when any row fails, since the
charge has already been taken by then.
"""
import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from cart import Cart
from payments import PaymentCapability
from schemas import Order, PaymentDetails

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_TTL = int(os.getenv("CHECKOUT_SESSION_TTL", str(2 * 60 * 60)))


class errmsg:
    """User facing checkout messages."""

    NAME_REQUIRED = "Please enter your name."
    PHONE_REQUIRED = "Please enter your phone number."
    CART_EMPTY = "Please add items to your cart before placing an order."
    PAYMENT_NOT_READY = "Payment system is loading. Please wait a moment."
    PAYMENT_FAILED = "Payment failed. Please try again."
    PAYMENT_CANCELLED = "Payment was cancelled."
    RECORDING_FAILED = "Payment successful but order recording failed. Please contact support with payment ID: {payment_id}"
    ORDER_PLACED = "Payment successful! Order placed for {count} item{plural}. We will contact you soon."


class CheckoutState(str, Enum):
    BROWSING = "browsing"
    AWAITING_CONTACT_INFO = "awaiting_contact_info"
    PAYMENT_READY = "payment_ready"
    CAPTURING = "capturing"
    COMPLETED = "completed"


TRANSITIONS = {
    CheckoutState.BROWSING: {CheckoutState.AWAITING_CONTACT_INFO, CheckoutState.PAYMENT_READY},
    CheckoutState.AWAITING_CONTACT_INFO: {CheckoutState.PAYMENT_READY},
    CheckoutState.PAYMENT_READY: {
        CheckoutState.BROWSING,
        CheckoutState.AWAITING_CONTACT_INFO,
        CheckoutState.CAPTURING,
    },
    CheckoutState.CAPTURING: {CheckoutState.COMPLETED},
    CheckoutState.COMPLETED: {
        CheckoutState.BROWSING,
        CheckoutState.AWAITING_CONTACT_INFO,
        CheckoutState.PAYMENT_READY,
    },
}


class IllegalTransition(Exception):
    """The requested step is not allowed from the current checkout state."""

    def __init__(self, current: CheckoutState, action: str):
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} while checkout is {current.value}")


class CheckoutRejected(Exception):
    """A precondition for the requested step is not met; the message is user facing."""


@dataclass
class Message:
    type: str
    text: str


@dataclass
class CustomerInfo:
    customer_name: str = ""
    phone_number: str = ""

    def clear(self):
        self.customer_name = ""
        self.phone_number = ""


@dataclass
class CaptureOutcome:
    payment_id: str
    recorded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.interrupted


class CheckoutSession:
    def __init__(self, session_id: str, payments: PaymentCapability):
        self.id = session_id
        self.payments = payments
        self.state = CheckoutState.BROWSING
        self.customer = CustomerInfo()
        self.cart = Cart(on_change=self._cart_changed)
        self.payment_setup: Optional[dict] = None
        self.message: Optional[Message] = None
        self.last_outcome: Optional[CaptureOutcome] = None

    # State handling

    def _transition(self, target: CheckoutState, action: str):
        if target not in TRANSITIONS[self.state]:
            raise IllegalTransition(self.state, action)
        logger.debug("checkout %s: %s -> %s", self.id, self.state.value, target.value)
        self.state = target

    def _require_editable(self, action: str):
        if self.state is CheckoutState.CAPTURING:
            raise IllegalTransition(self.state, action)

    def _cart_changed(self):
        # The prepared payment was for the old contents.
        if self.state in (CheckoutState.PAYMENT_READY, CheckoutState.COMPLETED):
            self.payment_setup = None
            self._transition(CheckoutState.BROWSING, "change the cart")

    # Cart

    def add_item(self, product: dict):
        self._require_editable("change the cart")
        return self.cart.add_item(product)

    def remove_item(self, product_id: str):
        self._require_editable("change the cart")
        self.cart.remove_item(product_id)

    def set_quantity(self, product_id: str, quantity: int):
        self._require_editable("change the cart")
        self.cart.set_quantity(product_id, quantity)

    # Contact info

    def set_customer_info(self, customer_name: str, phone_number: str):
        self._require_editable("change contact information")
        self.customer.customer_name = customer_name.strip()
        self.customer.phone_number = phone_number.strip()
        if self.message and self.message.type == "error":
            self.message = None
        if self.state in (CheckoutState.BROWSING, CheckoutState.COMPLETED):
            self._transition(CheckoutState.AWAITING_CONTACT_INFO, "enter contact information")

    # Payment

    def _reject(self, text: str):
        self.message = Message("error", text)
        raise CheckoutRejected(text)

    def proceed_to_payment(self) -> dict:
        if self.state not in (
            CheckoutState.BROWSING,
            CheckoutState.AWAITING_CONTACT_INFO,
            CheckoutState.COMPLETED,
        ):
            raise IllegalTransition(self.state, "proceed to payment")

        if not self.customer.customer_name:
            self._reject(errmsg.NAME_REQUIRED)
        if not self.customer.phone_number:
            self._reject(errmsg.PHONE_REQUIRED)
        if self.cart.is_empty:
            self._reject(errmsg.CART_EMPTY)
        if not self.payments.ready:
            self._reject(errmsg.PAYMENT_NOT_READY)

        self.payment_setup = self.payments.purchase_unit(self.cart.total(), self.cart.count)
        self.message = None
        self._transition(CheckoutState.PAYMENT_READY, "proceed to payment")
        return self.payment_setup

    def back_to_cart(self):
        if self.state is not CheckoutState.PAYMENT_READY:
            raise IllegalTransition(self.state, "go back to the cart")
        self.payment_setup = None
        self._transition(CheckoutState.AWAITING_CONTACT_INFO, "go back to the cart")

    def on_error(self):
        if self.state is not CheckoutState.PAYMENT_READY:
            raise IllegalTransition(self.state, "report a payment error")
        logger.warning("checkout %s: payment widget reported an error", self.id)
        self.message = Message("error", errmsg.PAYMENT_FAILED)

    def on_cancelled(self):
        if self.state is not CheckoutState.PAYMENT_READY:
            raise IllegalTransition(self.state, "cancel the payment")
        self.message = Message("error", errmsg.PAYMENT_CANCELLED)

    def build_orders(self, payment: PaymentDetails) -> List[Order]:
        payment_amount = float(self.cart.total())
        return [
            Order(
                customer_name=self.customer.customer_name,
                phone_number=self.customer.phone_number,
                product_name=line.name,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=float(line.price),
                total_price=float(line.line_total),
                is_completed=False,
                payment_id=payment.id,
                payment_status=payment.status,
                payment_amount=payment_amount,
                payment_method=payment.payment_method,
            )
            for line in self.cart.lines
        ]

    async def on_approved(self, payment: PaymentDetails, create_order: Callable[[Order], str]) -> CaptureOutcome:
        """Record one order row per cart line for a captured payment.

        All inserts are issued together and awaited as a group. Failures do not
        raise: the payment already went through, so the outcome reports which
        lines could not be recorded.
        """
        self._transition(CheckoutState.CAPTURING, "record a payment")
        self.payment_setup = None
        outcome = CaptureOutcome(payment_id=payment.id, interrupted=True)
        try:
            await self._record_orders(payment, create_order, outcome)
            outcome.interrupted = False
        except Exception:
            logger.exception("payment %s: could not record orders", payment.id)
        finally:
            # Leave CAPTURING whatever happened; the charge has been taken.
            self.last_outcome = outcome
            self._finish_capture(payment, outcome)
        return outcome

    async def _record_orders(self, payment: PaymentDetails, create_order, outcome: CaptureOutcome):
        orders = self.build_orders(payment)
        results = await asyncio.gather(
            *(run_in_threadpool(create_order, order) for order in orders),
            return_exceptions=True,
        )
        for order, result in zip(orders, results):
            if isinstance(result, BaseException):
                logger.error(
                    "payment %s: failed to record order for product %s: %r",
                    payment.id, order.product_id, result,
                )
                outcome.failed.append(order.product_id)
            else:
                outcome.recorded.append(result)

    def _finish_capture(self, payment: PaymentDetails, outcome: CaptureOutcome):
        if outcome.interrupted and not outcome.failed:
            outcome.failed = [line.product_id for line in self.cart.lines]
        if outcome.ok:
            count = self.cart.count
            logger.info("payment %s: recorded %d order rows", payment.id, len(outcome.recorded))
            self.cart.clear()
            self.customer.clear()
            self.message = Message(
                "success",
                errmsg.ORDER_PLACED.format(count=count, plural="s" if count != 1 else ""),
            )
        else:
            # Cart and contact info stay so the charge can be matched by hand.
            self.message = Message("error", errmsg.RECORDING_FAILED.format(payment_id=payment.id))
        self._transition(CheckoutState.COMPLETED, "finish checkout")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "state": self.state.value,
            "customer": {
                "customer_name": self.customer.customer_name,
                "phone_number": self.customer.phone_number,
            },
            "cart": self.cart.to_dict(),
            "payment": self.payment_setup,
            "message": {"type": self.message.type, "text": self.message.text} if self.message else None,
        }


class CheckoutSessionStore:
    """In-process session registry; sessions idle longer than `ttl` seconds are dropped."""

    def __init__(self, payments: PaymentCapability, ttl: int = CHECKOUT_SESSION_TTL, clock=time.monotonic):
        self.payments = payments
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}
        self._last_seen: Dict[str, float] = {}

    def _purge(self):
        now = self._clock()
        for session_id, seen in list(self._last_seen.items()):
            # never drop a session that is writing order rows
            if now - seen > self.ttl and self._sessions[session_id].state is not CheckoutState.CAPTURING:
                self.discard(session_id)

    def create(self) -> CheckoutSession:
        self._purge()
        session = CheckoutSession(uuid.uuid4().hex, self.payments)
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()
        return session

    def get(self, session_id: str) -> Optional[CheckoutSession]:
        self._purge()
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
        return session

    def discard(self, session_id: str):
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def __len__(self):
        return len(self._sessions)
