import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fuelpos.app.api.v1.api import api_router
from fuelpos.app.core.config import settings
from fuelpos.app.core.logging import setup_logging
from fuelpos.app.middleware.language import LanguageMiddleware
from fuelpos.app.middleware.request_id import RequestIDMiddleware

setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = logging.getLogger(__name__)

app = FastAPI(title="FuelPOS Station Back Office")

# ─── CORS, restricted to configured origins ──────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Accept-Language", "X-Request-ID"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)

# ─── Custom middleware (outermost executes first) ─────────────────────────────
app.add_middleware(LanguageMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}


logger.info("FuelPOS API started")
