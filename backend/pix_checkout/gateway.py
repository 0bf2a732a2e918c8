# pix_checkout/gateway.py
# ============================================================================
# PIX CHECKOUT - PAYMENT GATEWAY ADAPTER
# ============================================================================
# Purpose: Wrap the processor-facing backend's two operations behind a stable
# contract.
#
# FAILURE HANDLING:
# - Transport errors, non-2xx responses and malformed payloads are converted
#   into GatewayError results
# - Never raises to the caller
# - No retry policy; retries are the caller's decision
# ============================================================================

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from .config import CheckoutSettings
from .schemas import (
    CreateIntentResult,
    GatewayError,
    GatewayErrorKind,
    PaymentInstruction,
    QueryStatusResult,
    SettlementState,
)

APPROVED_STATUS = "approved"


class IPaymentGateway(ABC):
    """Processor adapter contract; implementations must be stateless per call"""

    @abstractmethod
    async def create_intent(self, amount: float, payer_email: str) -> CreateIntentResult:
        pass

    @abstractmethod
    async def query_status(self, external_payment_id: str) -> QueryStatusResult:
        pass


class PixGatewayClient(IPaymentGateway):
    """
    HTTP adapter for the PIX backend.

    Wire format:
        POST /pix               {"valor": amount, "email": payer}
            -> {"id": ..., "point_of_interaction": {"transaction_data":
                   {"qr_code": ..., "qr_code_base64": ...}}}
        GET  /pix/status/{id}   -> {"status": "approved" | ...}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._logger = structlog.get_logger().bind(component="pix_gateway", base_url=base_url)

    @classmethod
    def from_settings(cls, settings: CheckoutSettings) -> "PixGatewayClient":
        return cls(settings.gateway_url, timeout_seconds=settings.gateway_timeout_seconds)

    async def close(self):
        """Close HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    async def create_intent(self, amount: float, payer_email: str) -> CreateIntentResult:
        payload = await self._request("POST", "/pix", json={"valor": amount, "email": payer_email})
        if isinstance(payload, GatewayError):
            return payload

        try:
            transaction = payload["point_of_interaction"]["transaction_data"]
            payment_code = transaction["qr_code"]
            visual_code = transaction.get("qr_code_base64")
            external_id = payload["id"]
        except (KeyError, TypeError, AttributeError) as e:
            return self._malformed("create_intent", f"missing field {e}")

        if not payment_code or external_id in (None, ""):
            return self._malformed("create_intent", "empty payment code or reference")

        instruction = PaymentInstruction(
            payment_code=str(payment_code),
            visual_code=str(visual_code) if visual_code else None,
            external_payment_id=str(external_id),
        )
        self._logger.info("intent_created", external_payment_id=instruction.external_payment_id, amount=amount)
        return instruction

    async def query_status(self, external_payment_id: str) -> QueryStatusResult:
        payload = await self._request("GET", f"/pix/status/{external_payment_id}")
        if isinstance(payload, GatewayError):
            return payload

        if not isinstance(payload, dict):
            return self._malformed("query_status", "response is not an object")

        status = payload.get("status")
        self._logger.info("status_queried", external_payment_id=external_payment_id, processor_status=status)
        if status == APPROVED_STATUS:
            return SettlementState.SETTLED
        return SettlementState.OUTSTANDING

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.warning("gateway_timeout", method=method, path=path, error=str(e))
            return GatewayError(kind=GatewayErrorKind.TRANSPORT, message=f"Timeout calling {path}")
        except httpx.HTTPError as e:
            self._logger.warning("gateway_transport_error", method=method, path=path, error=str(e))
            return GatewayError(kind=GatewayErrorKind.TRANSPORT, message=str(e) or type(e).__name__)

        if response.is_error:
            self._logger.warning("gateway_http_error", method=method, path=path, status_code=response.status_code)
            return GatewayError(
                kind=GatewayErrorKind.HTTP_STATUS,
                message=f"Processor returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            return self._malformed(path, f"invalid JSON: {e}")

    def _malformed(self, operation: str, detail: str) -> GatewayError:
        self._logger.warning("gateway_malformed_response", operation=operation, detail=detail)
        return GatewayError(kind=GatewayErrorKind.MALFORMED_RESPONSE, message=detail)

