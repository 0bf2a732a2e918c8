"""
PIX Checkout Server
===================
Thin FastAPI surface over SessionController:
- One controller per checkout, kept in memory
- Notifications and navigation requests queued per checkout and drained by
  the client
- Shared stateless gateway adapter

pip install fastapi uvicorn pydantic structlog httpx
"""

from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import CheckoutSettings
from ..controller import ILateSettlementHandler, INavigator, INotifier, SessionController
from ..gateway import IPaymentGateway, PixGatewayClient
from ..logging_setup import configure_logging
from ..schemas import NotificationKind, OrderContext, PayerIdentity, PaymentSession, RenderState
from ..state_machine import ClockFactory, InvalidTransition

# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class StartCheckoutRequest(BaseModel):
    """Payment step entry: who is paying and for what"""
    user: Optional[PayerIdentity] = None
    order: Optional[OrderContext] = None


class LateSettlementRequest(BaseModel):
    external_payment_id: str = Field(..., min_length=1)


class CheckoutResponse(BaseModel):
    checkout_id: Optional[str] = None
    mounted: bool = True
    state: RenderState
    effects: List[Dict[str, Any]] = Field(default_factory=list)


class CopyResponse(CheckoutResponse):
    code: Optional[str] = None


# =============================================================================
# COLLABORATOR ADAPTERS
# =============================================================================

class OutboxChannel(INotifier, INavigator):
    """Queues toasts and redirects until the client polls for them"""

    def __init__(self):
        self._effects: Deque[Dict[str, Any]] = deque()

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        self._effects.append({"type": "notification", "kind": kind.value, "title": title, "message": message})

    def navigate(self, destination: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._effects.append({"type": "navigation", "destination": destination, "payload": payload})

    def drain(self) -> List[Dict[str, Any]]:
        drained = list(self._effects)
        self._effects.clear()
        return drained


class LoggingLateSettlementHandler(ILateSettlementHandler):
    """Records late settlements for out-of-band reconciliation"""

    def __init__(self):
        self.received: List[Dict[str, Any]] = []
        self._logger = structlog.get_logger().bind(component="late_settlement")

    async def on_late_settlement(self, external_payment_id: str, session: Optional[PaymentSession]) -> None:
        entry = {
            "external_payment_id": external_payment_id,
            "session_id": session.session_id if session else None,
            "order_id": session.order_id if session else None,
            "status": session.status.value if session else None,
        }
        self.received.append(entry)
        self._logger.warning("late_settlement_received", **entry)


@dataclass
class CheckoutHandle:
    controller: SessionController
    outbox: OutboxChannel
    checkout_id: str = field(default_factory=lambda: uuid4().hex)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    settings: Optional[CheckoutSettings] = None,
    gateway: Optional[IPaymentGateway] = None,
    clock_factory: Optional[ClockFactory] = None,
    late_settlement_handler: Optional[ILateSettlementHandler] = None,
) -> FastAPI:
    settings = settings or CheckoutSettings.from_env()
    configure_logging(settings.log_level, settings.log_format)
    logger = structlog.get_logger().bind(component="server")

    owned_gateway: Optional[PixGatewayClient] = None
    if gateway is None:
        owned_gateway = PixGatewayClient.from_settings(settings)
        gateway = owned_gateway

    checkouts: Dict[str, CheckoutHandle] = {}
    late_handler = late_settlement_handler or LoggingLateSettlementHandler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        logger.info("server_starting", gateway_url=settings.gateway_url)
        yield
        logger.info("server_shutting_down", open_checkouts=len(checkouts))
        for handle in list(checkouts.values()):
            handle.controller.unmount()
        checkouts.clear()
        if owned_gateway is not None:
            await owned_gateway.close()

    app = FastAPI(title="PIX Checkout", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.checkouts = checkouts
    app.state.late_settlement_handler = late_handler

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        return JSONResponse(status_code=409, content={"error": str(exc)})

    def get_handle(checkout_id: str) -> CheckoutHandle:
        handle = checkouts.get(checkout_id)
        if handle is None:
            raise HTTPException(status_code=404, detail="Checkout not found")
        return handle

    def release_if_completed(handle: CheckoutHandle) -> None:
        # Success redirect delivered to the client; the checkout is finished
        if handle.controller.navigated and checkouts.pop(handle.checkout_id, None) is not None:
            handle.controller.unmount()
            logger.info("checkout_completed", checkout_id=handle.checkout_id)

    def respond(handle: CheckoutHandle) -> CheckoutResponse:
        state = handle.controller.render()
        effects = handle.outbox.drain()
        release_if_completed(handle)
        return CheckoutResponse(
            checkout_id=handle.checkout_id,
            mounted=handle.controller.mounted,
            state=state,
            effects=effects,
        )

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {"status": "ok", "open_checkouts": len(checkouts)}

    @app.post("/sessions", response_model=CheckoutResponse)
    async def start_checkout(request: StartCheckoutRequest):
        outbox = OutboxChannel()
        controller = SessionController(
            gateway,
            notifier=outbox,
            navigator=outbox,
            settings=settings,
            clock_factory=clock_factory,
            late_settlement_handler=late_handler,
        )
        handle = CheckoutHandle(controller=controller, outbox=outbox)

        mounted = await controller.mount(request.user, request.order)
        if not mounted:
            return CheckoutResponse(mounted=False, state=controller.render(), effects=outbox.drain())

        checkouts[handle.checkout_id] = handle
        logger.info("checkout_opened", checkout_id=handle.checkout_id, order_id=request.order.order_id)
        return respond(handle)

    @app.get("/sessions/{checkout_id}", response_model=RenderState)
    async def get_state(checkout_id: str):
        return get_handle(checkout_id).controller.render()

    @app.get("/sessions/{checkout_id}/effects")
    async def get_effects(checkout_id: str):
        handle = get_handle(checkout_id)
        effects = handle.outbox.drain()
        release_if_completed(handle)
        return {"effects": effects}

    @app.post("/sessions/{checkout_id}/confirm", response_model=CheckoutResponse)
    async def confirm_payment(checkout_id: str):
        handle = get_handle(checkout_id)
        await handle.controller.confirm()
        return respond(handle)

    @app.post("/sessions/{checkout_id}/copy", response_model=CopyResponse)
    async def copy_code(checkout_id: str):
        handle = get_handle(checkout_id)
        code = handle.controller.copy_code()
        base = respond(handle)
        return CopyResponse(**base.model_dump(), code=code)

    @app.post("/sessions/{checkout_id}/restart", response_model=CheckoutResponse)
    async def restart_checkout(checkout_id: str):
        handle = get_handle(checkout_id)
        await handle.controller.restart()
        return respond(handle)

    @app.post("/sessions/{checkout_id}/late-settlement")
    async def late_settlement(checkout_id: str, request: LateSettlementRequest):
        handle = get_handle(checkout_id)
        forwarded = await handle.controller.report_late_settlement(request.external_payment_id)
        return {"forwarded": forwarded}

    @app.delete("/sessions/{checkout_id}")
    async def abandon_checkout(checkout_id: str):
        handle = checkouts.pop(checkout_id, None)
        if handle is None:
            raise HTTPException(status_code=404, detail="Checkout not found")
        handle.controller.abandon()
        logger.info("checkout_abandoned", checkout_id=checkout_id)
        return {"effects": handle.outbox.drain()}

    return app


def main() -> None:
    settings = CheckoutSettings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
