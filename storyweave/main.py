import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storyweave.config import settings
from storyweave.modules.session.deps import shutdown_engine
from storyweave.modules.session.router import router as session_router


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.env == "dev":
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    yield
    shutdown_engine()


app = FastAPI(title="Storyweave Session Engine", lifespan=_lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(session_router)
