"""HTTP and WebSocket server module."""

from .http_server import API_PREFIX, HttpServer, cors_middleware, error_middleware

__all__ = [
    "API_PREFIX",
    "HttpServer",
    "cors_middleware",
    "error_middleware",
]
