import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.api.routes import router
from backend.config import FRONTEND_URL, get_config_summary
from backend.database import AsyncSessionLocal, create_tables, engine, seed_demo_companies
from backend.graph.composer import build_composer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    logger.info("Database tables created / verified.")
    added = await seed_demo_companies()
    if added:
        logger.info("Seeded %d demo companies.", added)

    composer = build_composer(AsyncSessionLocal)
    app.state.composer = composer
    app.state.gateway = composer.gateway
    yield
    await engine.dispose()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Investor Metrics Chat API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health():
    return {"status": "ok", "config": get_config_summary()}
