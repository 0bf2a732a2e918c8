# pix_checkout/controller.py
# ============================================================================
# PIX CHECKOUT - SESSION CONTROLLER
# ============================================================================
# Orchestration boundary between the payment-session state machine and the
# outside world: order context in, user intents in, toasts and navigation
# out.
#
# RESPONSIBILITIES:
# 1. Guard the mount (no user -> auth page, no order -> home)
# 2. Start the session and wire the countdown into the state machine
# 3. Route "I already paid" into a confirmation request
# 4. Translate effects into notifications and exactly one redirect on PAID
# 5. Offer restart after EXPIRED / FAILED and abandon at any time
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog

from .config import CheckoutSettings
from .gateway import IPaymentGateway
from .schemas import (
    Effect,
    Notification,
    NotificationKind,
    OrderContext,
    PayerIdentity,
    PaymentSession,
    ProceedEffect,
    RenderState,
    SessionStatus,
)
from .state_machine import ClockFactory, InvalidTransition, PaymentSessionMachine

def format_time(seconds: int) -> str:
    """Render a countdown as MM:SS."""
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, 60)
    return f"{mins:02d}:{secs:02d}"


# =============================================================================
# COLLABORATOR INTERFACES
# =============================================================================

class INotifier(ABC):
    """Toast sink"""

    @abstractmethod
    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        pass


class INavigator(ABC):
    """Router sink"""

    @abstractmethod
    def navigate(self, destination: str, payload: Optional[Dict[str, Any]] = None) -> None:
        pass


class ILateSettlementHandler(ABC):
    """Receives settlements reported after the client-visible window closed"""

    @abstractmethod
    async def on_late_settlement(
        self,
        external_payment_id: str,
        session: Optional[PaymentSession],
    ) -> None:
        pass


# =============================================================================
# CONTROLLER
# =============================================================================

class SessionController:
    """
    Owns one payment session for the lifetime of the payment step.

    Example:
        controller = SessionController(gateway, notifier, navigator)
        await controller.mount(user, order)
        await controller.confirm()
        controller.unmount()
    """

    def __init__(
        self,
        gateway: IPaymentGateway,
        notifier: INotifier,
        navigator: INavigator,
        settings: Optional[CheckoutSettings] = None,
        clock_factory: Optional[ClockFactory] = None,
        late_settlement_handler: Optional[ILateSettlementHandler] = None,
    ):
        self.settings = settings or CheckoutSettings.from_env()
        self._notifier = notifier
        self._navigator = navigator
        self._late_settlement_handler = late_settlement_handler

        self.machine = PaymentSessionMachine(gateway, clock_factory=clock_factory)
        self.machine.subscribe(self._handle_effect)

        self._order: Optional[OrderContext] = None
        self._payer: Optional[PayerIdentity] = None
        self._mounted = False
        self._navigated = False
        self._copied = False
        self._redirect_task: Optional[asyncio.Task] = None
        self._copy_reset: Optional[asyncio.TimerHandle] = None
        self._logger = structlog.get_logger().bind(component="session_controller")

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def order(self) -> Optional[OrderContext]:
        return self._order

    @property
    def navigated(self) -> bool:
        """True once the success redirect has been issued."""
        return self._navigated

    @property
    def redirect_task(self) -> Optional[asyncio.Task]:
        return self._redirect_task

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def mount(self, user: Optional[PayerIdentity], order: Optional[OrderContext]) -> bool:
        """
        Read the order context once and start the session.

        Returns False when the route guard redirected instead.
        """
        if self._mounted:
            raise InvalidTransition("Controller already mounted")
        if user is None:
            self._logger.info("mount_rejected", reason="unauthenticated")
            self._navigator.navigate(self.settings.auth_path)
            return False
        if order is None:
            self._logger.info("mount_rejected", reason="missing_order")
            self._navigator.navigate(self.settings.home_path)
            return False

        self._order = order
        self._payer = user
        self._mounted = True
        self._logger.info("controller_mounted", order_id=order.order_id)
        await self.machine.start(order, user)
        return True

    def unmount(self) -> None:
        """Stop the clock, cancel pending timers and drop in-flight responses."""
        if not self._mounted:
            return
        self._mounted = False
        self.machine.dispose()
        if self._redirect_task is not None and not self._redirect_task.done():
            self._redirect_task.cancel()
        if self._copy_reset is not None:
            self._copy_reset.cancel()
            self._copy_reset = None
        self._logger.info("controller_unmounted", order_id=self._order.order_id if self._order else None)

    def abandon(self) -> None:
        """Leave the payment step without completing it."""
        self.unmount()
        self._navigator.navigate(self.settings.home_path)

    # =========================================================================
    # USER INTENTS
    # =========================================================================

    async def confirm(self) -> None:
        """The user's "I already paid" action."""
        if not self._mounted or not self.machine.can_confirm:
            self._logger.debug("confirm_disabled", status=self._status_value())
            return
        await self.machine.request_confirmation()

    async def restart(self) -> None:
        """Generate a fresh code after EXPIRED or FAILED."""
        if not self._mounted:
            raise InvalidTransition("Controller is not mounted")
        if self.machine.status not in (SessionStatus.EXPIRED, SessionStatus.FAILED):
            raise InvalidTransition(f"Cannot restart while {self._status_value()}")
        if self._copy_reset is not None:
            self._copy_reset.cancel()
        self._clear_copied()
        await self.machine.start(self._order, self._payer)

    def copy_code(self) -> Optional[str]:
        """Return the payment code for the clipboard and flag it as copied."""
        code = self.machine.instruction_text()
        if code is None:
            self._notifier.notify(NotificationKind.ERROR, "Error", "Could not copy the code.")
            return None

        self._copied = True
        if self._copy_reset is not None:
            self._copy_reset.cancel()
        self._copy_reset = asyncio.get_running_loop().call_later(
            self.settings.copy_feedback_seconds, self._clear_copied
        )
        self._notifier.notify(NotificationKind.INFO, "Code copied", "Paste it in your banking app.")
        return code

    async def report_late_settlement(self, external_payment_id: str) -> bool:
        """
        Forward an out-of-band settlement to the registered handler.

        The session itself is left untouched. Returns whether a handler
        received the notification.
        """
        session = self.machine.session
        self._logger.info("late_settlement_reported",
                          external_payment_id=external_payment_id,
                          status=self._status_value())
        if self._late_settlement_handler is None:
            return False
        await self._late_settlement_handler.on_late_settlement(external_payment_id, session)
        return True

    # =========================================================================
    # RENDERING
    # =========================================================================

    def render(self) -> RenderState:
        session = self.machine.session
        if session is None:
            return RenderState(is_loading=self._mounted)

        remaining = session.remaining_seconds if session.status != SessionStatus.GENERATING else 0
        return RenderState(
            session_id=session.session_id,
            order_id=session.order_id,
            status=session.status,
            remaining_seconds=remaining,
            time_left=format_time(remaining),
            progress=session.progress if session.payment_code else 0.0,
            code_text=session.payment_code,
            visual_code=session.visual_code,
            failure_reason=session.failure_reason,
            is_loading=session.status == SessionStatus.GENERATING,
            is_confirming=self.machine.is_confirming,
            can_confirm=self._mounted and self.machine.can_confirm,
            can_restart=self._mounted and session.status in (SessionStatus.EXPIRED, SessionStatus.FAILED),
            copied=self._copied,
        )

    # =========================================================================
    # EFFECTS
    # =========================================================================

    def _handle_effect(self, effect: Effect) -> None:
        if isinstance(effect, Notification):
            self._notifier.notify(effect.kind, effect.title, effect.message)
        elif isinstance(effect, ProceedEffect):
            self._schedule_redirect(effect)

    def _schedule_redirect(self, effect: ProceedEffect) -> None:
        if self._navigated or self._redirect_task is not None:
            self._logger.warning("duplicate_proceed_ignored", session_id=effect.session_id)
            return
        if self.settings.redirect_delay_seconds <= 0:
            self._navigate_to_success(effect)
            return
        self._redirect_task = asyncio.get_running_loop().create_task(self._delayed_redirect(effect))

    async def _delayed_redirect(self, effect: ProceedEffect) -> None:
        await asyncio.sleep(self.settings.redirect_delay_seconds)
        if self._mounted:
            self._navigate_to_success(effect)

    def _navigate_to_success(self, effect: ProceedEffect) -> None:
        if self._navigated:
            return
        self._navigated = True
        self._logger.info("redirecting_to_confirmation",
                          session_id=effect.session_id,
                          order_id=effect.order.order_id)
        self._navigator.navigate(self.settings.success_path, effect.order.as_payload())

    def _clear_copied(self) -> None:
        self._copied = False
        self._copy_reset = None

    def _status_value(self) -> Optional[str]:
        status = self.machine.status
        return status.value if status else None
