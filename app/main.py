import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1 import router as api_router
from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import register_exception_handlers

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=settings.LOG_LEVEL.upper(),
)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    log.info("Database ready")
    yield
    await close_db()


app = FastAPI(title="Alumni Connect", lifespan=lifespan)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Alumni Connect API"}
