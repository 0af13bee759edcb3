"""
Point d'entrée de l'API de réception Saksham.
Démarrage : uvicorn saksham.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import saksham.models  # noqa: F401  enregistre les modèles dans Base.metadata
from saksham import __version__
from saksham.database import Base, engine
from saksham.routers import sync

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Crée les tables manquantes au démarrage."""
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Saksham API",
    description="API de réception des rapports de formation terrain (offline-first)",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Origines locales uniquement en développement
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

app.include_router(sync.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Toute exception non gérée devient une réponse 500 JSON qui passe par CORSMiddleware.
    L'appareil la traite comme un échec réessayable.
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle (sonde de connectivité des appareils)."""
    return {"status": "ok", "service": "Saksham API", "version": __version__}
