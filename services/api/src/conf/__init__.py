from typing import List

from pydantic import BaseModel

from models.operations.authorization import AuthorizationPolicy, admin_email_policy
from utils import auth, env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

# Set to False only for local development; every authenticated route then answers 401
USE_AUTH = True

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

#### Env Vars ####

## Auth ##

AUTH_OIDC_JWK_URL = EnvVarSpec(id="AUTH_OIDC_JWK_URL", is_optional=True)
AUTH_OIDC_AUDIENCE = EnvVarSpec(id="AUTH_OIDC_AUDIENCE", is_optional=True)
AUTH_OIDC_ISSUER = EnvVarSpec(id="AUTH_OIDC_ISSUER", is_optional=True)

ADMIN_EMAIL = EnvVarSpec(id="ADMIN_EMAIL", is_optional=True)

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

# Comma-separated list of browser origins allowed by CORS
CLIENT_URL = EnvVarSpec(id="CLIENT_URL", default="http://localhost:3000")

## Auctions ##

EXPIRY_SWEEP_INTERVAL_SECONDS = EnvVarSpec(
    id="EXPIRY_SWEEP_INTERVAL_SECONDS",
    default="30",
    parse=int,
    type=(int, ...),
)

## Couchbase / SMTP ##
## NOTE: read directly by clients.couchbase (COUCHBASE_*) and clients.smtp (SMTP_*, FROM_EMAIL).

#### Validation ####
VALIDATED_ENV_VARS = [
    ADMIN_EMAIL,
    CLIENT_URL,
    EXPIRY_SWEEP_INTERVAL_SECONDS,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    LOG_LEVEL,
]

# Only validate auth vars if USE_AUTH is True
if USE_AUTH:
    VALIDATED_ENV_VARS.extend([
        AUTH_OIDC_JWK_URL,
        AUTH_OIDC_AUDIENCE,
        AUTH_OIDC_ISSUER,
    ])

def validate() -> bool:
    ok = env.validate(VALIDATED_ENV_VARS)
    if ok and env.parse(EXPIRY_SWEEP_INTERVAL_SECONDS) <= 0:
        logger.error("EXPIRY_SWEEP_INTERVAL_SECONDS must be positive")
        ok = False
    if ok and not env.parse(ADMIN_EMAIL):
        logger.warning("ADMIN_EMAIL not set, admin endpoints will reject every caller")
    return ok

#### Getters ####

def get_auth_config() -> auth.AuthClientConfig:
    """Get authentication configuration."""
    return auth.AuthClientConfig(
        jwk_url=env.parse(AUTH_OIDC_JWK_URL),
        audience=env.parse(AUTH_OIDC_AUDIENCE),
        issuer=env.parse(AUTH_OIDC_ISSUER),
    )

def get_admin_policy() -> AuthorizationPolicy:
    return admin_email_policy(env.parse(ADMIN_EMAIL))

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_cors_origins() -> List[str]:
    return [origin.strip() for origin in env.parse(CLIENT_URL).split(",") if origin.strip()]

def get_expiry_sweep_interval_seconds() -> int:
    return env.parse(EXPIRY_SWEEP_INTERVAL_SECONDS)
