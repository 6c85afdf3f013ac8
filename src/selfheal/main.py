import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from selfheal.api.healing_endpoints import get_healing_orchestrator, router as healing_router, set_healing_orchestrator
from selfheal.core.config import settings
from selfheal.core.logging_config import setup_healing_logging

# --- FastAPI App ---
app = FastAPI(title="Self-Healing Test Orchestration")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Healing API Router ---
app.include_router(healing_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup_event():
    setup_healing_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    await get_healing_orchestrator()
    logging.info("Application startup complete.")


@app.on_event("shutdown")
async def shutdown_event():
    orchestrator = await get_healing_orchestrator()
    await orchestrator.cleanup()
    set_healing_orchestrator(None)
    logging.info("Application shutdown complete.")
