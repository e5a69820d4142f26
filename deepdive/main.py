from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from deepdive.api import deps
from deepdive.api.routes import research, sessions
from deepdive.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    yield
    # Shutdown counts as a host termination signal
    engine = deps.current_engine()
    if engine is not None:
        completed = await engine.lifecycle.on_background()
        if completed:
            logger.info(f"Completed {len(completed)} active sessions on shutdown")
        await engine.aclose()
        deps.set_engine(None)


app = FastAPI(
    title="DeepDive",
    description="Tiered multi-round research engine with session recall",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)
app.include_router(sessions.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deepdive"}


def serve():
    import uvicorn

    uvicorn.run("deepdive.main:app", host=settings.host, port=settings.port, log_level=settings.app_log_level.lower())
