import asyncio
from collections import deque
from typing import Any, Dict, List, Optional

import pytest

from pix_checkout.config import CheckoutSettings
from pix_checkout.controller import INavigator, INotifier
from pix_checkout.gateway import IPaymentGateway
from pix_checkout.schemas import (
    GatewayError,
    GatewayErrorKind,
    NotificationKind,
    OrderContext,
    OrderItem,
    PayerIdentity,
    PaymentInstruction,
    SettlementState,
)


def make_instruction(n: int = 1) -> PaymentInstruction:
    return PaymentInstruction(
        payment_code=f"00020126580014br.gov.bcb.pix-{n}",
        visual_code=f"iVBORw0KGgo-{n}",
        external_payment_id=f"pay-{n}",
    )


def gateway_error(message: str = "processor unavailable") -> GatewayError:
    return GatewayError(kind=GatewayErrorKind.TRANSPORT, message=message)


class FakeGateway(IPaymentGateway):
    """Scripted gateway; queued exceptions are raised, optional gates hold calls in flight"""

    def __init__(self, intents=None, statuses=None):
        self.intents = deque(intents or [])
        self.statuses = deque(statuses or [])
        self.create_calls: List[tuple] = []
        self.query_calls: List[str] = []
        self.intent_gate: Optional[asyncio.Event] = None
        self.status_gate: Optional[asyncio.Event] = None

    async def create_intent(self, amount, payer_email):
        self.create_calls.append((amount, payer_email))
        if self.intent_gate is not None:
            await self.intent_gate.wait()
        if self.intents:
            return self._next(self.intents)
        return make_instruction(len(self.create_calls))

    async def query_status(self, external_payment_id):
        self.query_calls.append(external_payment_id)
        if self.status_gate is not None:
            await self.status_gate.wait()
        if self.statuses:
            return self._next(self.statuses)
        return SettlementState.OUTSTANDING

    @staticmethod
    def _next(scripted):
        outcome = scripted.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ManualClock:
    """Clock stand-in; tests drive ticks by hand"""

    def __init__(self, duration_seconds, on_tick):
        self.duration_seconds = duration_seconds
        self.on_tick = on_tick
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def advance(self, ticks: int = 1):
        for _ in range(ticks):
            self.on_tick(None)


class RecordingChannel(INotifier, INavigator):
    def __init__(self):
        self.notifications: List[tuple] = []
        self.navigations: List[tuple] = []

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        self.notifications.append((kind, title, message))

    def navigate(self, destination: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.navigations.append((destination, payload))

    def kinds(self) -> List[NotificationKind]:
        return [n[0] for n in self.notifications]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clocks():
    return []


@pytest.fixture
def clock_factory(clocks):
    def factory(duration_seconds, on_tick):
        clock = ManualClock(duration_seconds, on_tick)
        clocks.append(clock)
        return clock
    return factory


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def settings():
    return CheckoutSettings(redirect_delay_seconds=0, copy_feedback_seconds=0.02)


@pytest.fixture
def order():
    return OrderContext(
        order_id="A1",
        total=150.00,
        items=[
            OrderItem(product_ref="sku-1", quantity=2, unit_price=50.00),
            OrderItem(product_ref="sku-2", quantity=1, unit_price=50.00),
        ],
    )


@pytest.fixture
def payer():
    return PayerIdentity(email="buyer@example.com")
