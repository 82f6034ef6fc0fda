"""
Caller identity and authorization checks.

The identity provider itself is external; this module only defines the
shape it yields and the checks every mutating operation runs against it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from util.logging import logger, audit_event
from .config import get_admin_user_ids
from .exceptions import AuthorizationError


@dataclass(frozen=True)
class Identity:
    """Verified caller identity."""
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture_url: Optional[str] = None


class IdentityProvider(ABC):
    """Source of the verified caller identity."""

    @abstractmethod
    def get_user_identity(self) -> Optional[Identity]:
        """Return the verified identity, or None for anonymous callers."""
        pass


class StaticIdentityProvider(IdentityProvider):
    """Provider returning a fixed identity (scripts, tests)."""

    def __init__(self, identity: Optional[Identity] = None):
        self.identity = identity

    def get_user_identity(self) -> Optional[Identity]:
        return self.identity


class HeaderIdentityProvider(IdentityProvider):
    """
    Identity taken from X-User-* headers set by a fronting auth proxy.

    Header names are matched case-insensitively.
    """

    def __init__(self, headers: Mapping[str, str]):
        self.headers = {k.lower(): v for k, v in headers.items()}

    def get_user_identity(self) -> Optional[Identity]:
        subject = (self.headers.get("x-user-id") or "").strip()
        if not subject:
            return None
        return Identity(
            subject=subject,
            email=self.headers.get("x-user-email"),
            name=self.headers.get("x-user-name"),
            picture_url=self.headers.get("x-user-picture"),
        )


def require_identity(identity: Optional[Identity], owner_id: str = None) -> Identity:
    """
    Ensure a non-empty identity exists and, when `owner_id` is given, owns
    the resource.

    Raises:
        AuthorizationError: identity missing or subject mismatch
    """
    if identity is None or not identity.subject:
        logger.warning("Authorization failed: no verified identity")
        raise AuthorizationError("Unauthorized")

    if owner_id is not None and identity.subject != owner_id:
        audit_event(
            event_type="auth.owner_mismatch",
            identifiers={"subject": identity.subject, "owner_id": owner_id}
        )
        raise AuthorizationError("Unauthorized: caller does not own this resource")

    return identity


def is_admin(identity: Optional[Identity]) -> bool:
    """Check the elevated capability required for rollbacks."""
    if identity is None or not identity.subject:
        return False
    return identity.subject in get_admin_user_ids()


def require_admin(identity: Optional[Identity]) -> Identity:
    """
    Ensure the caller holds the admin capability. Plain ownership is not enough.

    Raises:
        AuthorizationError: caller is anonymous or not an administrator
    """
    identity = require_identity(identity)
    if not is_admin(identity):
        audit_event(
            event_type="auth.admin_denied",
            identifiers={"subject": identity.subject}
        )
        raise AuthorizationError("Unauthorized: Only admins can rollback migrations")
    return identity
