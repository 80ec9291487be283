"""OIDC bearer-token verification.

The identity provider's JWKS is fetched with httpx and cached; tokens are
verified with python-jose against that key set.
"""

import time
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwt
from pydantic import BaseModel

from utils import log

logger = log.get_logger(__name__)

ALLOWED_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384"]


class AuthClientConfig(BaseModel):
    jwk_url: Optional[str] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None
    keys_ttl_seconds: int = 3600


class AuthClient:
    def __init__(self, config: AuthClientConfig) -> None:
        self.config = config
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def refresh_keys(self) -> None:
        if not self.config.jwk_url:
            logger.warning("AUTH_OIDC_JWK_URL not set, all tokens will be rejected")
            return
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(self.config.jwk_url)
            response.raise_for_status()
            self._jwks = response.json()
        self._fetched_at = time.monotonic()
        logger.info(f"Loaded {len(self._jwks.get('keys', []))} signing keys from {self.config.jwk_url}")

    async def ensure_keys(self) -> None:
        expired = time.monotonic() - self._fetched_at > self.config.keys_ttl_seconds
        if self._jwks is None or expired:
            try:
                await self.refresh_keys()
            except httpx.HTTPError as e:
                logger.error(f"Failed to fetch JWKS: {e}")

    def decode_jwt(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify *token* and return its claims, or ``None`` if it is not valid."""
        if not self._jwks:
            return None
        try:
            return jwt.decode(
                token,
                self._jwks,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"verify_aud": bool(self.config.audience)},
            )
        except JWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            return None
