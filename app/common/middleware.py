"""
Middleware for multi-tenant requests

Every API call runs in the context of one company (tenant), taken from the
X-Company-ID header. Approval workflows, members and locations are all
scoped by that id.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Company-ID"


def _tenant_error(detail: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Reads the company id from X-Company-ID into request.state.tenant_id.
    The auth dependency later checks it against the tenant in the token.
    """

    # Documentation and health endpoints run without a tenant
    PUBLIC_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/health")

    def is_public(self, request: Request) -> bool:
        path = request.url.path
        if request.method == "OPTIONS" or path == "/":
            return True
        return path.startswith(self.PUBLIC_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        if self.is_public(request):
            return await call_next(request)

        raw_tenant = request.headers.get(TENANT_HEADER)
        if not raw_tenant:
            return _tenant_error(f"Falta el header {TENANT_HEADER}")

        try:
            request.state.tenant_id = UUID(raw_tenant)
        except ValueError:
            logger.debug(f"Rejected malformed tenant header {raw_tenant!r} on {request.url.path}")
            return _tenant_error(f"{TENANT_HEADER} debe ser un UUID válido")

        response = await call_next(request)
        response.headers["X-Tenant-ID"] = str(request.state.tenant_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Basic hardening headers on every response"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers[name] = value
        return response
