from typing import Optional

from fastapi import Request, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import conf
from models.operations.authorization import AuthorizationPolicy, Identity
from utils import log

logger = log.get_logger(__name__)

security = HTTPBearer(auto_error=False)


def _email_claim(payload: dict) -> str:
    email = payload.get("email")
    # Some providers send a list of {"value": ...} entries
    if isinstance(email, list):
        if not email:
            return ""
        first = email[0]
        return str(first.get("value", "")) if isinstance(first, dict) else str(first)
    return str(email) if email else ""


async def current_user_get(
    request: Request,
    token: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    auth_client = getattr(request.app.state, "auth_client", None)
    if auth_client is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No auth_client")
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")

    await auth_client.ensure_keys()
    payload = auth_client.decode_jwt(token.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        logger.warning(f"Token without sub claim. Claims: {list(payload.keys())}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    return Identity(uid=user_id, email=_email_claim(payload))


def admin_policy_get() -> AuthorizationPolicy:
    return conf.get_admin_policy()
