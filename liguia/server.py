from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path
from typing import List

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from .routes import (  # noqa: E402
    connections_router,
    contacts_router,
    diagnostics_router,
    media_router,
    meta_router,
    settings_router,
    webhooks_router,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="LiguIA WhatsApp API")


def resolve_cors_allow_origins() -> List[str]:
    raw = (os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


CORS_ALLOW_ORIGINS = resolve_cors_allow_origins()
CORS_ALLOW_ORIGIN_REGEX = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip() or None

# allow_origins=["*"] falha com allow_credentials=True em alguns navegadores
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "liguia"}


@app.get("/")
async def root():
    return {"message": "LiguIA WhatsApp API", "status": "running"}


api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def api_health_check():
    return {"status": "healthy", "service": "liguia"}


api_router.include_router(media_router)
api_router.include_router(contacts_router)
api_router.include_router(connections_router)
api_router.include_router(diagnostics_router)
api_router.include_router(webhooks_router)
api_router.include_router(meta_router)
api_router.include_router(settings_router)

# Include the router in the main app
app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    logger.info(f"LiguIA WhatsApp API started (CORS: {', '.join(CORS_ALLOW_ORIGINS)})")
