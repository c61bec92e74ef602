"""
Middleware package for request processing.
"""
from .extforward import FORWARDED_PROTO_HEADER, ExtForwardMiddleware
from .request_logging import RequestLoggingMiddleware

__all__ = ["ExtForwardMiddleware", "FORWARDED_PROTO_HEADER", "RequestLoggingMiddleware"]
