import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import init_db
from app.api import assistant, chat, interventions, machines


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_path.parent.mkdir(parents=True, exist_ok=True)

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(assistant.router, prefix="/api/assistant", tags=["assistant"])
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(machines.router, prefix="/api/machines", tags=["machines"])
app.include_router(interventions.router, prefix="/api/interventions", tags=["interventions"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
