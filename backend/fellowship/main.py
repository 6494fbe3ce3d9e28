"""
Point d'entrée principal de l'API de présence Fellowship.
Démarrage : uvicorn fellowship.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import fellowship.models  # noqa: F401  enregistre tous les modèles dans Base.metadata avant les routers
from fellowship.config import settings
from fellowship.routers import attendance, sessions, sync
from fellowship.scheduler import start_scheduler, stop_scheduler
from fellowship.services.offline_queue import OfflineQueue
from fellowship.store import StoreUnavailable

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie : ouvre la file offline locale et démarre le job de synchronisation."""
    app.state.offline_queue = OfflineQueue(settings.OFFLINE_QUEUE_URL)
    start_scheduler(app.state.offline_queue)
    yield
    stop_scheduler()
    app.state.offline_queue.engine.dispose()


app = FastAPI(
    title="Fellowship Attendance API",
    description="API de pointage des présences par QR code (offline-first)",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise les ports localhost en développement (à restreindre en production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-User-Id", "X-User-Name", "X-User-Role"],
)


app.include_router(sessions.router)
app.include_router(attendance.router)
app.include_router(sync.router)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("Base de données injoignable : %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Base de données momentanément indisponible. Réessayez plus tard."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "Fellowship Attendance API", "version": "0.1.0"}
