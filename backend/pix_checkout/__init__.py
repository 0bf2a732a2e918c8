# pix_checkout/__init__.py
# ============================================================================
# PIX CHECKOUT - PAYMENT SESSION RECONCILIATION
# ============================================================================
# Countdown-bound PIX payment sessions with manual, pull-based settlement
# confirmation and exactly-once completion.
# ============================================================================

from .clock import CountdownClock
from .config import CheckoutSettings, VALIDITY_WINDOW_SECONDS
from .controller import (
    SessionController,
    INotifier,
    INavigator,
    ILateSettlementHandler,
    format_time,
)
from .gateway import IPaymentGateway, PixGatewayClient
from .logging_setup import configure_logging
from .schemas import (
    OrderItem,
    OrderContext,
    PayerIdentity,
    PaymentSession,
    PaymentInstruction,
    SessionStatus,
    SettlementState,
    GatewayError,
    GatewayErrorKind,
    Notification,
    NotificationKind,
    ProceedEffect,
    RenderState,
    SessionEvent,
)
from .state_machine import PaymentSessionMachine, SessionError, InvalidTransition

__all__ = [
    # Clock
    "CountdownClock",
    # Config
    "CheckoutSettings",
    "VALIDITY_WINDOW_SECONDS",
    "configure_logging",
    # Gateway
    "IPaymentGateway",
    "PixGatewayClient",
    # State machine
    "PaymentSessionMachine",
    "SessionError",
    "InvalidTransition",
    # Controller
    "SessionController",
    "INotifier",
    "INavigator",
    "ILateSettlementHandler",
    "format_time",
    # Schemas
    "OrderItem",
    "OrderContext",
    "PayerIdentity",
    "PaymentSession",
    "PaymentInstruction",
    "SessionStatus",
    "SettlementState",
    "GatewayError",
    "GatewayErrorKind",
    "Notification",
    "NotificationKind",
    "ProceedEffect",
    "RenderState",
    "SessionEvent",
]
