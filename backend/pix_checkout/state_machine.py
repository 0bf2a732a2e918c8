"""
Payment Session State Machine
=============================
Owns the lifecycle of one PIX payment session:

    GENERATING -> PENDING -> PAID | EXPIRED
    GENERATING -> FAILED

Guarantees:
- Terminal statuses (PAID, EXPIRED, FAILED) are never overwritten
- Every async response is checked against the session generation it was
  issued for; superseded or post-terminal responses are discarded
- The proceed effect is emitted at most once per session
- At most one confirmation query in flight
- Exceptions raised by the gateway adapter are treated as gateway failures
"""

from typing import Callable, List, Optional

import structlog

from .clock import CountdownClock, TickCallback
from .config import VALIDITY_WINDOW_SECONDS
from .gateway import IPaymentGateway
from .schemas import (
    Effect,
    GatewayError,
    GatewayErrorKind,
    Notification,
    NotificationKind,
    OrderContext,
    PayerIdentity,
    PaymentSession,
    ProceedEffect,
    SessionEvent,
    SessionStatus,
    SettlementState,
)

ClockFactory = Callable[[int, TickCallback], CountdownClock]
EffectListener = Callable[[Effect], None]


class SessionError(Exception):
    """Base class for payment session errors."""


class InvalidTransition(SessionError):
    """Raised when an operation is not legal in the current lifecycle state."""


def default_clock_factory(duration_seconds: int, on_tick: TickCallback) -> CountdownClock:
    return CountdownClock(duration_seconds, on_tick=on_tick)


class PaymentSessionMachine:
    """
    Single-owner state machine for a payment session.

    Example:
        machine = PaymentSessionMachine(gateway)
        machine.subscribe(controller.handle_effect)
        await machine.start(order, payer)
        await machine.request_confirmation()
    """

    def __init__(
        self,
        gateway: IPaymentGateway,
        clock_factory: Optional[ClockFactory] = None,
    ):
        self._gateway = gateway
        self._clock_factory = clock_factory or default_clock_factory
        self._listeners: List[EffectListener] = []
        self._history: List[SessionEvent] = []
        self._clock: Optional[CountdownClock] = None

        self.session: Optional[PaymentSession] = None
        self._generation = 0
        self._confirming = False
        self._proceed_emitted = False
        self._disposed = False

        self._logger = structlog.get_logger().bind(component="payment_session")

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def status(self) -> Optional[SessionStatus]:
        return self.session.status if self.session else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_confirming(self) -> bool:
        return self._confirming

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def can_confirm(self) -> bool:
        return self.status == SessionStatus.PENDING and not self._confirming and not self._disposed

    @property
    def history(self) -> List[SessionEvent]:
        return list(self._history)

    def subscribe(self, listener: EffectListener) -> None:
        self._listeners.append(listener)

    def instruction_text(self) -> Optional[str]:
        """Payment code for copy-to-clipboard; only while PENDING."""
        if self.status == SessionStatus.PENDING:
            return self.session.payment_code
        return None

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def start(self, order: OrderContext, payer: PayerIdentity) -> PaymentSession:
        """
        Enter GENERATING and request a payment intent.

        Allowed on a fresh machine or after FAILED / EXPIRED; each call opens
        a new generation so nothing from an earlier attempt leaks through.
        """
        if self._disposed:
            raise InvalidTransition("Session controller has been unmounted")
        if self.status in (SessionStatus.GENERATING, SessionStatus.PENDING, SessionStatus.PAID):
            raise InvalidTransition(f"Cannot start a session while {self.status.value}")

        self._stop_clock()
        self._generation += 1
        generation = self._generation
        self._confirming = False
        self._proceed_emitted = False

        previous = self.status
        self.session = PaymentSession(order=order, payer=payer)
        self._record(previous, "start")

        log = self._bound_logger()
        log.info("session_started", amount=order.total, generation=generation)

        try:
            result = await self._gateway.create_intent(order.total, payer.email)
        except Exception as e:
            result = self._adapter_fault(log, "create_intent", e)

        if not self._is_current(generation):
            log.debug("stale_response_discarded", operation="create_intent", generation=generation)
            return self.session

        if isinstance(result, GatewayError):
            self._transition(SessionStatus.FAILED, "generation_failed", failure_reason=result.message)
            log.warning("generation_failed", error_kind=result.kind.value, error=result.message)
            self._emit(Notification(
                kind=NotificationKind.ERROR,
                title="Payment code unavailable",
                message="Could not generate the PIX payment. Please try again.",
            ))
            return self.session

        self.session = self.session.with_instruction(result)
        self._record(SessionStatus.GENERATING, "intent_created")
        log.info("session_pending",
                 external_payment_id=result.external_payment_id,
                 expires_at=self.session.expires_at.isoformat())

        self._clock = self._clock_factory(VALIDITY_WINDOW_SECONDS, self.tick)
        self._clock.start()
        return self.session

    def tick(self, remaining: Optional[int] = None) -> None:
        """
        Advance the countdown by one second.

        A clock that woke up late passes the wall-clock remaining seconds;
        the countdown then jumps to it, never moving backwards.
        """
        if self._disposed or self.status != SessionStatus.PENDING:
            return

        target = self.session.remaining_seconds - 1
        if remaining is not None:
            target = min(target, remaining)
        target = max(0, target)

        if target > 0:
            self.session = self.session.model_copy(update={"remaining_seconds": target})
            return

        self._stop_clock()
        self._transition(SessionStatus.EXPIRED, "window_elapsed", remaining_seconds=0)
        self._bound_logger().info("session_expired")
        self._emit(Notification(
            kind=NotificationKind.WARNING,
            title="PIX expired",
            message="The payment window has closed. Generate a new code to continue.",
        ))

    async def request_confirmation(self) -> Optional[SettlementState]:
        """
        Ask the processor whether the intent has settled.

        Returns the settlement state that was applied, or None when the call
        was ignored, failed, or its response was stale.
        """
        log = self._bound_logger()
        if self._disposed or self.status != SessionStatus.PENDING:
            log.debug("confirmation_ignored", status=self.status.value if self.status else None)
            return None
        if self._confirming:
            log.debug("confirmation_already_in_flight")
            return None

        generation = self._generation
        external_payment_id = self.session.external_payment_id
        self._confirming = True
        try:
            result = await self._gateway.query_status(external_payment_id)
        except Exception as e:
            result = self._adapter_fault(log, "query_status", e)
        finally:
            if generation == self._generation:
                self._confirming = False

        if not self._is_current(generation) or self.status != SessionStatus.PENDING:
            log.debug("stale_response_discarded",
                      operation="query_status",
                      generation=generation,
                      status=self.status.value if self.status else None)
            return None

        if isinstance(result, GatewayError):
            log.warning("confirmation_query_failed", error_kind=result.kind.value, error=result.message)
            self._emit(Notification(
                kind=NotificationKind.ERROR,
                title="Error",
                message="Could not check the payment status. Please try again.",
            ))
            return None

        if result == SettlementState.OUTSTANDING:
            log.info("confirmation_outstanding", external_payment_id=external_payment_id)
            self._emit(Notification(
                kind=NotificationKind.INFO,
                title="Still pending",
                message="Payment not confirmed yet.",
            ))
            return result

        self._stop_clock()
        self._transition(SessionStatus.PAID, "settlement_confirmed")
        log.info("session_paid",
                 external_payment_id=external_payment_id,
                 remaining_seconds=self.session.remaining_seconds)
        self._emit(Notification(
            kind=NotificationKind.SUCCESS,
            title="Payment approved",
            message="PIX confirmed.",
        ))
        if not self._proceed_emitted:
            self._proceed_emitted = True
            self._emit(ProceedEffect(session_id=self.session.session_id, order=self.session.order))
        return result

    def dispose(self) -> None:
        """Stop the clock and invalidate every in-flight response."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._confirming = False
        self._stop_clock()
        self._bound_logger().info("session_disposed")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _adapter_fault(self, log, operation: str, error: Exception) -> GatewayError:
        """Adapters report failures as results; anything raised is folded into one."""
        log.error("gateway_adapter_raised", operation=operation, error=str(error), exc_info=True)
        return GatewayError(kind=GatewayErrorKind.TRANSPORT, message=f"{type(error).__name__}: {error}")

    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    def _transition(self, new_status: SessionStatus, reason: str, **changes) -> None:
        previous = self.session.status
        self.session = self.session.transition_to(new_status, **changes)
        self._record(previous, reason)

    def _record(self, previous: Optional[SessionStatus], reason: str) -> None:
        self._history.append(SessionEvent(
            session_id=self.session.session_id,
            generation=self._generation,
            previous_status=previous,
            new_status=self.session.status,
            reason=reason,
        ))

    def _stop_clock(self) -> None:
        if self._clock is not None:
            self._clock.stop()
            self._clock = None

    def _emit(self, effect: Effect) -> None:
        for listener in list(self._listeners):
            try:
                listener(effect)
            except Exception as e:
                self._logger.error("effect_listener_failed",
                                   effect=type(effect).__name__,
                                   error=str(e),
                                   exc_info=True)

    def _bound_logger(self):
        if self.session is None:
            return self._logger
        return self._logger.bind(session_id=self.session.session_id, order_id=self.session.order_id)
