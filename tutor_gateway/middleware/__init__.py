"""
HTTP middleware for the gateway application.
"""

from .rate_limiter import RateLimitMiddleware

__all__ = ["RateLimitMiddleware"]
