# vaxlink backend api
# fastapi app with async mongodb, jwt identity, and the doctor-patient connection workflow

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vaxlink.config import settings
from vaxlink.errors import ConnectionCodeError, status_for_reason
from vaxlink.services.code_store import MongoCodeStore, build_code_store
from vaxlink.services.db import db
from vaxlink.routers import connections, patients

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """startup: connect to mongodb and build the code store. shutdown: close connection."""
    logger.info("Starting VaxLink backend...")
    await db.connect()

    app.state.code_store = build_code_store(db)
    if isinstance(app.state.code_store, MongoCodeStore):
        await app.state.code_store.ensure_indexes()
    logger.info(f"Code store backend: {settings.CODE_STORE_BACKEND}")

    logger.info("VaxLink backend ready")
    yield
    logger.info("Shutting down VaxLink backend...")
    await db.close()


app = FastAPI(
    title="VaxLink API",
    description="Backend API for VaxLink vaccination tracking — doctor-patient connection codes and QR linking",
    version="0.1.0",
    lifespan=lifespan,
)

# cors — allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConnectionCodeError)
async def connection_error_handler(request: Request, exc: ConnectionCodeError):
    """connection workflow errors raised outside the redemption flow (issuing codes, qr export)"""
    return JSONResponse(
        status_code=status_for_reason(exc.reason),
        content={"detail": {"reason": exc.reason, "message": exc.message}},
    )


# register routers
app.include_router(connections.router)
app.include_router(patients.router)


@app.get("/health")
async def health_check():
    """basic health check endpoint"""
    return {"status": "ok", "service": "vaxlink-api"}
