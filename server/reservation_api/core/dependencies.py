"""FastAPI dependencies for services, authentication and role checks."""

from typing import Callable, Optional

import structlog
from fastapi import Depends, Header, Request

from ..services.reservation_service import ReservationService
from ..services.webhook_service import WebhookReconciler
from .auth import AuthGate, Claim, Role
from .config import Settings
from .exceptions import AuthenticationError, AuthorizationError


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.auth_gate


def get_reservation_service(request: Request) -> ReservationService:
    return request.app.state.reservation_service


def get_webhook_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.webhook_reconciler


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError(reason="invalid", detail="Invalid authorization header format")
    return parts[1]


async def get_current_claim(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Claim:
    """
    Authentication dependency that validates Bearer tokens.

    Returns:
        Claim: Identity carried by the token

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    claim = get_auth_gate(request).authenticate(_bearer_token(authorization))
    structlog.contextvars.bind_contextvars(subject_id=claim.subject_id, role=claim.role.value)
    return claim


def require_roles(*roles: Role) -> Callable:
    """Build a dependency that admits only callers holding one of ``roles``."""

    async def dependency(claim: Claim = Depends(get_current_claim)) -> Claim:
        if not AuthGate.authorize(claim, roles):
            raise AuthorizationError(required_roles=[role.value for role in roles])
        return claim

    return dependency


CUSTOMER_ROLES = (Role.ADMIN, Role.BOOKING_STAFF, Role.USER)
STAFF_ONLY = (Role.ADMIN, Role.BOOKING_STAFF)

RequiredCustomer = Depends(require_roles(*CUSTOMER_ROLES))
RequiredStaff = Depends(require_roles(*STAFF_ONLY))
ReservationServiceDependency = Depends(get_reservation_service)
WebhookReconcilerDependency = Depends(get_webhook_reconciler)
SettingsDependency = Depends(get_settings)
