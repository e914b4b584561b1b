#main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from linka import __version__
from linka.config import get_settings
from linka.endpoints.notion_sync import router as notion_sync_router
from linka.logging import configure_logging
from linka.notion_client import close_client as close_notion_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    yield
    await close_notion_client()


app = FastAPI(
    title="Linka schema proxy",
    description="Server-side proxy that fetches and normalizes a user's workspace schema.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(notion_sync_router)


@app.get("/health")
def health():
    return {"status": "healthy"}
