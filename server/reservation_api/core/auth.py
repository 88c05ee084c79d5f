"""Bearer token verification and role checks."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import jwt
from jwt import PyJWTError

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class Role(str, Enum):
    """Roles carried in bearer tokens."""
    ADMIN = "admin"
    BOOKING_STAFF = "booking_staff"
    USER = "user"
    GUEST = "guest"


STAFF_ROLES = frozenset({Role.ADMIN, Role.BOOKING_STAFF})


@dataclass(frozen=True)
class Claim:
    """Identity decoded from a verified bearer token."""

    subject_id: str
    role: Role
    expires_at: Optional[datetime]

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class AuthGate:
    """
    Verifies compact HS256 tokens (header.payload.signature) and yields claims.

    Accepts both flat claims (``sub``/``role``) and the legacy nested form
    ``{"user": {"id": ..., "role": ...}}``. Has no side effects.
    """

    def __init__(
        self,
        secret: str,
        token_ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._secret = secret
        self._token_ttl = timedelta(seconds=token_ttl_seconds)
        self._clock = clock

    def authenticate(self, credential: Optional[str]) -> Claim:
        """
        Verify a raw token and return its claim.

        Raises:
            AuthenticationError: reason ``unauthenticated``, ``invalid`` or ``expired``
        """
        if not credential:
            raise AuthenticationError(reason="unauthenticated")

        if credential.count(".") != 2:
            raise AuthenticationError(reason="invalid", detail="Malformed bearer token")

        try:
            payload = jwt.decode(
                credential,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "require": ["exp"]},
            )
        except PyJWTError as e:
            logger.info("Rejected bearer token", extra={"error": str(e)})
            raise AuthenticationError(reason="invalid", detail=f"Token validation failed: {e}")

        claim = self._claim_from_payload(payload)

        # Expiry is checked against the injected clock rather than PyJWT's wall clock
        if claim.expires_at is not None and self._clock() >= claim.expires_at:
            raise AuthenticationError(reason="expired", detail="Token has expired")

        return claim

    @staticmethod
    def authorize(claim: Claim, allowed_roles: Iterable[Role | str]) -> bool:
        """Pure allow-list check."""
        allowed = {Role(role) for role in allowed_roles}
        return claim.role in allowed

    def issue(self, subject_id: str, role: Role | str, ttl: Optional[timedelta] = None) -> str:
        """Mint a signed token for the given subject."""
        issued_at = self._clock()
        payload = {
            "sub": str(subject_id),
            "role": Role(role).value,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + (ttl if ttl is not None else self._token_ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def _claim_from_payload(self, payload: dict[str, Any]) -> Claim:
        user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
        subject_id = payload.get("sub") or user.get("id")
        raw_role = payload.get("role") or user.get("role")

        if subject_id is None or raw_role is None:
            raise AuthenticationError(reason="invalid", detail="Invalid token payload")

        try:
            role = Role(str(raw_role))
        except ValueError:
            raise AuthenticationError(reason="invalid", detail=f"Unknown role '{raw_role}'")

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise AuthenticationError(reason="invalid", detail="Token expiry must be a NumericDate")
        try:
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise AuthenticationError(reason="invalid", detail="Token expiry is out of range")

        return Claim(subject_id=str(subject_id), role=role, expires_at=expires_at)
