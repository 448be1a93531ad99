from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.db import AsyncSessionLocal
from core.environment import get_procedure_mode
from core.logging import setup_logging
from exceptions import register_exception_handlers
from routers import blocks, calendar, health, metrics, vehicles
from services.data_access import choose_data_path

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    mode = get_procedure_mode()
    async with AsyncSessionLocal() as session:
        app.state.use_procedures = await choose_data_path(session, mode)

    logger.info(
        "Fleet API started",
        extra={
            "procedure_mode": mode,
            "data_path": "procedures" if app.state.use_procedures else "queries",
        },
    )
    try:
        yield
    finally:
        app.state.use_procedures = False


app = FastAPI(title="Fleet Status API", lifespan=lifespan)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],   # Allows POST, GET, OPTIONS, etc
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(vehicles.router)
app.include_router(blocks.router)
app.include_router(calendar.router)
app.include_router(metrics.router)


@app.get("/", tags=["root"])
def hello():
    return {"message": "Fleet Status API"}
