from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from trippy.api.deps import get_store
from trippy.api.routers.sessions import router as sessions_router
from trippy.core.db import init_db
from trippy.core.logging import configure_logging
from trippy.core.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: logging, schema, and change-feed shutdown."""
    configure_logging()
    init_db()
    yield
    try:
        await get_store().close()
    except Exception as e:
        logger.warning("Shutdown warning: %s", e)


app = FastAPI(title=f"{settings.APP_NAME} - Live Itinerary API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/metrics", make_asgi_app())


@app.get("/health")
def health():
    return {"status": "ok", "service": settings.APP_NAME}


app.include_router(sessions_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
