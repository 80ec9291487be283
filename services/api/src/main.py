from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes.base import router
from routes.errors import register_error_handlers
from utils import log

from clients.couchbase import check_connection
from models.entities.couchbase.bids import Bid
from models.entities.couchbase.items import Item
from models.operations.notifications import drain_notifications

REPO_ROOT = Path(__file__).resolve().parents[3]

log.init(conf.get_log_level())
logger = log.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Check database connection
    logger.info("Verifying Couchbase connection...")
    await check_connection()
    for entity in (Item, Bid):
        await entity.get_keyspace().ensure_exists()
    logger.info("Couchbase connection verified, collections ready.")

    # Initialize auth client if enabled
    if conf.USE_AUTH:
        from utils import auth

        app.state.auth_client = auth.AuthClient(conf.get_auth_config())
        await app.state.auth_client.ensure_keys()
    else:
        logger.warning("Authentication is disabled (set USE_AUTH to enable)")

    from scheduler import init_scheduler, shutdown_scheduler

    init_scheduler(conf.get_expiry_sweep_interval_seconds())

    yield

    shutdown_scheduler()
    await drain_notifications()


app = FastAPI(
    title="Silent Auction API",
    version="0.1.0",
    docs_url="/docs",
    lifespan=lifespan,
    debug=conf.get_http_expose_errors(),
)

app.include_router(router)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=conf.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health", tags=["health"])
async def route_health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if not conf.validate():
    raise ValueError("Invalid configuration.")

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

logger.info("--- Registered Routes ---")
for route in app.routes:
    methods_set = getattr(route, "methods", None)
    methods = ", ".join(sorted(methods_set)) if methods_set else "Any"
    path = getattr(route, "path", "<unknown>")
    logger.info(f"{path} [{methods}]")
logger.info("-------------------------")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[
            str(Path(__file__).parent),
            str(REPO_ROOT / "models" / "python"),
            str(REPO_ROOT / "clients" / "python"),
        ],
        log_config=None,
    )
