"""AI backends that classify media items."""

from .base import AnalysisRequest, BackendAdapter, BackendResponse, ImagePayload
from .http import HttpTransport, TransportResult
from .registry import available_backends, create_backend, register_backend

__all__ = [
    "AnalysisRequest",
    "BackendAdapter",
    "BackendResponse",
    "ImagePayload",
    "HttpTransport",
    "TransportResult",
    "available_backends",
    "create_backend",
    "register_backend",
]
