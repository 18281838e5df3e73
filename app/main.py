import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.database import close_db, init_db
from app.errors import register_error_handlers
from app.routers import alerts, beneficiaries, red_flags, voice

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ASHA voice service...")
    await init_db()
    logger.info("Database initialized")
    yield
    await close_db()
    logger.info("ASHA voice service shut down")


app = FastAPI(
    title="ASHA Voice Health Reports",
    description="Spoken visit notes and symptom reports to structured data, risk scores and alerts",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.include_router(voice.router)
app.include_router(red_flags.router)
app.include_router(alerts.router)
app.include_router(beneficiaries.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
