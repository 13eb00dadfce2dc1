"""Middleware modules for request processing."""

from transitnav.middleware.request_logging import RequestLoggingMiddleware, get_client_ip, setup_logging

__all__ = [
    "RequestLoggingMiddleware",
    "get_client_ip",
    "setup_logging",
]
