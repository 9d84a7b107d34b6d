"""
Marketplace checkout service entry point: FastAPI app, lifespan, routers and the
error boundary that renders every failure as {error, code, message?}.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


def _dev_mode() -> bool:
    return os.environ.get("DEV_MODE", "0") == "1"


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database on start-up."""
    from marketplace.database import init_db

    init_db()
    logger.info("Database initialised")
    yield


app = FastAPI(title="Kappa Marketplace", description="Checkout and settlement", lifespan=lifespan)

# ── CORS (development) ────────────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── Error boundary ────────────────────────────────────────

from marketplace.services.errors import MarketplaceError


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500 or exc.detail:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(_dev_mode()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"error": "Internal server error", "code": "INTERNAL_ERROR"}
    if _dev_mode():
        body["detail"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# ── Routers ───────────────────────────────────────────────

from marketplace.routes.admin import router as admin_router
from marketplace.routes.checkout import router as checkout_router
from marketplace.routes.stewards import router as stewards_router
from marketplace.routes.webhook import router as webhook_router

app.include_router(checkout_router)
app.include_router(stewards_router)
app.include_router(webhook_router)
app.include_router(admin_router)


# ── Health ────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    return {"status": "ok"}
