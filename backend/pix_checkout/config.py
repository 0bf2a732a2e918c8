# pix_checkout/config.py
# ============================================================================
# PIX CHECKOUT - CONFIGURATION
# ============================================================================
# Environment-driven settings for the payment-session core and its HTTP
# surface. The validity window is a fixed constant, not a setting.
# ============================================================================

import os
from dataclasses import dataclass


VALIDITY_WINDOW_SECONDS: int = 600


@dataclass
class CheckoutSettings:
    """Configuration for the PIX checkout flow."""
    gateway_url: str = "http://localhost:3000"
    gateway_timeout_seconds: float = 15.0

    # Navigation destinations
    success_path: str = "/checkout/sucesso"
    home_path: str = "/"
    auth_path: str = "/auth"

    # UX timings
    redirect_delay_seconds: float = 1.2
    copy_feedback_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # HTTP surface
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "CheckoutSettings":
        return cls(
            gateway_url=os.getenv("PIX_GATEWAY_URL", "http://localhost:3000"),
            gateway_timeout_seconds=float(os.getenv("PIX_GATEWAY_TIMEOUT", "15.0")),
            success_path=os.getenv("PIX_SUCCESS_PATH", "/checkout/sucesso"),
            home_path=os.getenv("PIX_HOME_PATH", "/"),
            auth_path=os.getenv("PIX_AUTH_PATH", "/auth"),
            redirect_delay_seconds=float(os.getenv("PIX_REDIRECT_DELAY", "1.2")),
            copy_feedback_seconds=float(os.getenv("PIX_COPY_FEEDBACK_SECONDS", "2.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )
