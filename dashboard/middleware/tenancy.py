"""
Per-request organization scoping.

Every request ends up RESOLVED (organization attached to request.state),
REJECTED (structured 400), or, for public routes, passed through unresolved.
Sources are tried in order: x-organization-id header, organizationId query
parameter, Host subdomain, verified bearer-token claim.
"""
import logging
import re
import uuid
from typing import Iterable, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from dashboard.core.config import settings
from dashboard.core.security import read_organization_claim
from dashboard.schemas import TenancyContext

logger = logging.getLogger("uvicorn.error")

ORGANIZATION_HEADER = "x-organization-id"
ORGANIZATION_QUERY_PARAM = "organizationId"

_UUID_V4 = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_LOCALHOST_SUBDOMAIN = re.compile(r"^([^.]+)\.localhost")


def is_valid_uuid4(value: str) -> bool:
    return bool(_UUID_V4.match(value))


def is_public_route(path: str, prefixes: Optional[Iterable[str]] = None) -> bool:
    prefixes = settings.PUBLIC_ROUTE_PREFIXES if prefixes is None else prefixes
    return any(path.startswith(prefix) for prefix in prefixes)


def extract_subdomain(host: Optional[str]) -> Optional[str]:
    if not host:
        return None

    hostname = host.split(":", 1)[0].lower()
    if "localhost" in hostname:
        match = _LOCALHOST_SUBDOMAIN.match(hostname)
        return match.group(1) if match else None

    parts = hostname.split(".")
    if len(parts) >= 3 and parts[0] not in settings.NON_TENANT_SUBDOMAINS:
        return parts[0]
    return None


def extract_token_organization_id(authorization: Optional[str]) -> Optional[str]:
    """Only a signature-verified token counts; anything else is treated as absent."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return read_organization_claim(authorization[len("Bearer "):].strip())


def extract_organization_id(request: Request) -> Optional[str]:
    header_org_id = request.headers.get(ORGANIZATION_HEADER)
    if header_org_id:
        return header_org_id

    query_org_id = request.query_params.get(ORGANIZATION_QUERY_PARAM)
    if query_org_id:
        return query_org_id

    subdomain = extract_subdomain(request.headers.get("host"))
    if subdomain:
        return subdomain

    return extract_token_organization_id(request.headers.get("authorization"))


def _rejection(error: str, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, "message": message, "code": code})


class TenancyMiddleware(BaseHTTPMiddleware):
    """Attaches a TenancyContext to request.state.tenancy or rejects the request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if is_public_route(path):
            return await call_next(request)

        existing = getattr(request.state, "tenancy", None)
        if existing is None:
            organization_id = extract_organization_id(request)

            if not organization_id:
                logger.info(f"Rejected {request.method} {path}: missing organization context")
                return _rejection(
                    "Missing organization context",
                    "Organization ID is required",
                    "MISSING_ORGANIZATION",
                )

            if not is_valid_uuid4(organization_id):
                logger.info(f"Rejected {request.method} {path}: invalid organization id")
                return _rejection(
                    "Invalid organization ID",
                    "Organization ID must be a valid UUID",
                    "INVALID_ORGANIZATION_ID",
                )

            existing = TenancyContext(organization_id=uuid.UUID(organization_id))
            request.state.tenancy = existing
            logger.debug(f"Organization context set: {existing.organization_id} for {request.method} {path}")

        response = await call_next(request)
        response.headers["X-Organization-ID"] = str(existing.organization_id)
        return response


def require_tenancy(request: Request) -> TenancyContext:
    """Route dependency for endpoints that cannot run without an organization."""
    tenancy = getattr(request.state, "tenancy", None)
    if tenancy is None:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Organization required",
                "message": "This endpoint requires organization context",
                "code": "ORGANIZATION_REQUIRED",
            },
        )
    return tenancy
