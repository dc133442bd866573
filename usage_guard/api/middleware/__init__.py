"""Middleware for the usage guard API."""

from usage_guard.api.middleware.error_handlers import register_error_handlers, usage_error_response
from usage_guard.api.middleware.request_id import request_id_middleware

__all__ = ["register_error_handlers", "request_id_middleware", "usage_error_response"]
