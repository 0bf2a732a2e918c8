# api/__init__.py
from .server import create_app, OutboxChannel, LoggingLateSettlementHandler

__all__ = [
    "create_app",
    "OutboxChannel",
    "LoggingLateSettlementHandler",
]
