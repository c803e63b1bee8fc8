"""Periodic SQS send/receive with traceId/spanId carried in message attributes."""

from .config import Config, ConfigurationError
from .consumer import Consumer, ProcessedResult
from .producer import BatchResult, Producer
from .trace_context import TraceContext
from .transport import Message, SqsTransport

__version__ = "1.0.0"

__all__ = [
    "BatchResult",
    "Config",
    "ConfigurationError",
    "Consumer",
    "Message",
    "ProcessedResult",
    "Producer",
    "SqsTransport",
    "TraceContext",
]
