"""
API Module
"""
from .app import create_api_app
from .middleware import RequestLoggingMiddleware

__all__ = [
    "create_api_app",
    "RequestLoggingMiddleware",
]
