"""
Security headers middleware.

Sets browser hardening headers on every response, errors included.
HSTS is only sent in production so local HTTP development keeps working.
"""

from typing import Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from idcard_api.config import get_settings

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: https: http:",
    "font-src 'self' data:",
    "connect-src 'self' https: wss:",
    "frame-ancestors 'none'",
    "form-action 'self'",
    "base-uri 'self'",
])

PERMISSIONS_POLICY = ", ".join([
    "camera=()",
    "microphone=()",
    "geolocation=()",
    "payment=()",
    "fullscreen=()",
    "accelerometer=()",
    "gyroscope=()",
    "magnetometer=()",
    "usb=()",
])

STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains; preload"


def security_headers(environment: str) -> Dict[str, str]:
    """Headers applied to every response in ``environment``."""
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Content-Security-Policy": CONTENT_SECURITY_POLICY,
        "Permissions-Policy": PERMISSIONS_POLICY,
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }
    if environment == "production":
        headers["Strict-Transport-Security"] = STRICT_TRANSPORT_SECURITY
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers after the request is processed."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in security_headers(get_settings().environment).items():
            response.headers[name] = value
        return response
