from fastapi import APIRouter
from utils import log

from .events import router as events_router
from .items import router as items_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(items_router)
router.include_router(events_router)
