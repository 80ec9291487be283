"""Caller identity and the admin authorization policy.

Every admin-only operation (create, delete, close) receives the policy as an
argument instead of comparing emails itself, so there is exactly one place
that decides who the administrator is.
"""

from typing import Callable, Optional

from pydantic import BaseModel

from models.errors import Forbidden


class Identity(BaseModel):
    """A verified caller as delivered by the identity provider."""
    uid: str
    email: str = ""


AuthorizationPolicy = Callable[[Identity], bool]


def admin_email_policy(admin_email: Optional[str]) -> AuthorizationPolicy:
    """Allow exactly the identity whose email matches *admin_email*, ignoring case.

    With no admin email configured nobody is allowed.
    """
    expected = (admin_email or "").strip().lower()

    def _is_admin(identity: Identity) -> bool:
        if not expected or identity is None:
            return False
        return (identity.email or "").strip().lower() == expected

    return _is_admin


def authorize(policy: AuthorizationPolicy, identity: Identity) -> None:
    if not policy(identity):
        raise Forbidden("Forbidden: Admins only")
