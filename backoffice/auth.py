"""
Admin authorization.

The resolver walks a fixed precedence of signals and stops at the first one
that grants access:

1. a well-formed bearer credential must be present (401 otherwise),
2. the identity verifier must accept it (401 otherwise),
3. an ``admin`` role claim on the verified subject grants access,
4. an ``admin`` role in the user directory, looked up by email, grants access,
5. outside production, the development bypass grants any verified subject,
6. everything else is forbidden (403).

Role information may live in the identity provider's claims or in the user
directory; both are consulted in that order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Sequence

import jwt

from backoffice.db import ResourceStore

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

MISSING_CREDENTIAL = "Missing Authorization bearer token"
INVALID_TOKEN = "Invalid token"
FORBIDDEN = "Forbidden"


class IdentityError(Exception):
    """The credential could not be verified."""


@dataclass(frozen=True)
class Subject:
    id: str
    email: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    @property
    def roles(self) -> tuple[str, ...]:
        roles = []
        for section in ("app_metadata", "user_metadata"):
            metadata = self.claims.get(section) or {}
            role = metadata.get("role") if isinstance(metadata, Mapping) else None
            if isinstance(role, str) and role:
                roles.append(role)
        return tuple(roles)

    def has_role(self, role: str) -> bool:
        return any(r.lower() == role.lower() for r in self.roles)


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    status_hint: int
    message: str
    subject: Optional[Subject] = None
    source: Optional[str] = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> Subject:
        """Return the verified subject or raise :class:`IdentityError`."""
        ...


class UserDirectory(Protocol):
    async def role_for_email(
        self, email: str, *, case_insensitive: bool
    ) -> Optional[str]:
        ...


class JwtIdentityVerifier:
    """
    Verifies access tokens issued by the managed auth service (HS256 signed
    with the project's JWT secret).
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithms: Sequence[str] = ("HS256",),
        audience: Optional[str] = "authenticated",
    ):
        if not secret:
            raise ValueError("A JWT secret is required")
        self.secret = secret
        self.algorithms = list(algorithms)
        self.audience = audience

    async def verify(self, token: str) -> Subject:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                options={
                    "require": ["exp", "sub"],
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.PyJWTError as exc:
            raise IdentityError(str(exc)) from exc
        return Subject(id=str(claims["sub"]), email=claims.get("email"), claims=claims)


class InMemoryIdentityVerifier:
    """Token to subject table for development and tests."""

    def __init__(self, subjects: Optional[Mapping[str, Subject]] = None):
        self.subjects: dict[str, Subject] = dict(subjects or {})

    async def verify(self, token: str) -> Subject:
        subject = self.subjects.get(token)
        if subject is None:
            raise IdentityError("Unknown token")
        return subject


class StoreUserDirectory:
    """User directory backed by the ``users`` resource store."""

    def __init__(self, store: ResourceStore):
        self.store = store

    async def role_for_email(
        self, email: str, *, case_insensitive: bool
    ) -> Optional[str]:
        row = await self.store.find_one("email", email, case_insensitive=case_insensitive)
        if not row or row.get("role") is None:
            return None
        return str(row["role"])


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthorizationResolver:
    def __init__(
        self,
        verifier: IdentityVerifier,
        directory: Optional[UserDirectory] = None,
        *,
        development_bypass: bool = False,
    ):
        self.verifier = verifier
        self.directory = directory
        self.development_bypass = development_bypass

    async def resolve(self, authorization: Optional[str]) -> AuthorizationDecision:
        logger.info("Checking admin credential: %s", "present" if authorization else "missing")
        token = extract_bearer_token(authorization)
        if token is None:
            logger.info("Missing or malformed bearer token")
            return AuthorizationDecision(False, 401, MISSING_CREDENTIAL)

        try:
            subject = await self.verifier.verify(token)
        except IdentityError as exc:
            logger.info("Token verification failed: %s", exc)
            return AuthorizationDecision(False, 401, INVALID_TOKEN)
        except Exception:
            logger.exception("Identity verifier error")
            return AuthorizationDecision(False, 401, INVALID_TOKEN)
        logger.info("Token valid for subject id=%s email=%s roles=%s", subject.id, subject.email, subject.roles)

        if subject.has_role(ADMIN_ROLE):
            logger.info("Admin access granted via role claim")
            return AuthorizationDecision(True, 200, "OK", subject, "claims")

        if subject.email and await self._directory_grants(subject.email):
            return AuthorizationDecision(True, 200, "OK", subject, "directory")

        if __debug__ and self.development_bypass:
            logger.warning(
                "DEVELOPMENT BYPASS: granting admin access to %s without an admin role",
                subject.email or subject.id,
            )
            return AuthorizationDecision(True, 200, "OK", subject, "development")

        logger.warning(
            "Forbidden for %s; role claims=%s; directory role missing or not admin",
            subject.email or subject.id,
            subject.roles or "-",
        )
        return AuthorizationDecision(False, 403, FORBIDDEN, subject)

    async def _directory_grants(self, email: str) -> bool:
        if self.directory is None:
            return False
        for case_insensitive in (True, False):
            mode = "case-insensitive" if case_insensitive else "exact"
            try:
                role = await self.directory.role_for_email(
                    email, case_insensitive=case_insensitive
                )
            except Exception as exc:
                logger.info("User directory lookup (%s) failed: %s", mode, exc)
                continue
            logger.info("User directory lookup (%s): role=%s", mode, role)
            if role and role.lower() == ADMIN_ROLE:
                logger.info("Admin access granted via user directory (%s)", mode)
                return True
        return False
