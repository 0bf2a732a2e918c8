# pix_checkout/schemas.py
# ============================================================================
# PIX CHECKOUT - DOMAIN SCHEMAS
# ============================================================================
# Order context handed in by the cart, the payment session entity, gateway
# results, and the effects the state machine emits towards the controller.
# ============================================================================

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .config import VALIDITY_WINDOW_SECONDS


# =============================================================================
# INBOUND ORDER CONTEXT
# =============================================================================

class OrderItem(BaseModel):
    """Single cart line as provided by the order collaborator"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    product_ref: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class OrderContext(BaseModel):
    """Immutable order summary handed to the session at start"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    order_id: str = Field(min_length=1)
    total: float = Field(gt=0)
    items: List[OrderItem] = Field(default_factory=list)

    def as_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PayerIdentity(BaseModel):
    """Authenticated user's contact identity"""
    model_config = ConfigDict(frozen=True)

    email: str = Field(min_length=3)


# =============================================================================
# ENUMS
# =============================================================================

class SessionStatus(str, Enum):
    GENERATING = "generating"
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.PAID, SessionStatus.EXPIRED, SessionStatus.FAILED})


class SettlementState(str, Enum):
    SETTLED = "settled"
    OUTSTANDING = "outstanding"


class GatewayErrorKind(str, Enum):
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED_RESPONSE = "malformed_response"


class NotificationKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# GATEWAY RESULTS
# =============================================================================

class PaymentInstruction(BaseModel):
    """Processor-issued settlement instruction"""
    payment_code: str = Field(min_length=1)
    visual_code: Optional[str] = None
    external_payment_id: str = Field(min_length=1)


class GatewayError(BaseModel):
    """Typed failure reported by the gateway adapter instead of raising"""
    kind: GatewayErrorKind
    message: str
    status_code: Optional[int] = None


CreateIntentResult = Union[PaymentInstruction, GatewayError]
QueryStatusResult = Union[SettlementState, GatewayError]


# =============================================================================
# EFFECTS
# =============================================================================

class Notification(BaseModel):
    """User-facing toast"""
    kind: NotificationKind
    title: str
    message: str


class ProceedEffect(BaseModel):
    """One-shot request to continue to order confirmation"""
    session_id: str
    order: OrderContext


Effect = Union[Notification, ProceedEffect]


class SessionEvent(BaseModel):
    """Append-only audit entry for a status transition"""
    session_id: str
    generation: int
    previous_status: Optional[SessionStatus] = None
    new_status: SessionStatus
    reason: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# PAYMENT SESSION
# =============================================================================

class PaymentSession(BaseModel):
    """Central entity; replaced wholesale on every transition"""
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    order: OrderContext
    payer: PayerIdentity

    status: SessionStatus = SessionStatus.GENERATING
    payment_code: Optional[str] = None
    visual_code: Optional[str] = None
    external_payment_id: Optional[str] = None
    remaining_seconds: int = VALIDITY_WINDOW_SECONDS
    failure_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None

    @computed_field
    @property
    def order_id(self) -> str:
        return self.order.order_id

    @computed_field
    @property
    def amount(self) -> float:
        return self.order.total

    @computed_field
    @property
    def progress(self) -> float:
        """Remaining share of the validity window, 0-100"""
        return self.remaining_seconds / VALIDITY_WINDOW_SECONDS * 100

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: SessionStatus, **changes) -> "PaymentSession":
        """Immutable state transition"""
        return self.model_copy(update={"status": new_status, **changes})

    def with_instruction(self, instruction: PaymentInstruction) -> "PaymentSession":
        issued_at = datetime.utcnow()
        return self.transition_to(
            SessionStatus.PENDING,
            payment_code=instruction.payment_code,
            visual_code=instruction.visual_code,
            external_payment_id=instruction.external_payment_id,
            remaining_seconds=VALIDITY_WINDOW_SECONDS,
            created_at=issued_at,
            expires_at=issued_at + timedelta(seconds=VALIDITY_WINDOW_SECONDS),
        )


class RenderState(BaseModel):
    """Everything the presentation layer needs to draw the payment step"""
    session_id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[SessionStatus] = None
    remaining_seconds: int = 0
    time_left: str = "00:00"
    progress: float = 0.0
    code_text: Optional[str] = None
    visual_code: Optional[str] = None
    failure_reason: Optional[str] = None
    is_loading: bool = False
    is_confirming: bool = False
    can_confirm: bool = False
    can_restart: bool = False
    copied: bool = False
