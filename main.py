import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from api.routes import router as api_router
from api.websocket import router as ws_router
from utils.debug import debug_log as _debug_log
import config as cfg


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    _debug_log(f"[APP] Starting posture monitor ({cfg.ENVIRONMENT}), detection at {cfg.DETECTION_FPS} fps")
    yield
    # Shutdown
    _debug_log("[APP] Shutting down")


app = FastAPI(
    title="Posture Monitor",
    description="Real-time sitting posture classification and alerting.",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url="/docs" if cfg.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if cfg.ENVIRONMENT == "development" else None,
    openapi_url="/openapi.json" if cfg.ENVIRONMENT == "development" else None,
)

# CORS Configuration - More restrictive in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
    max_age=600,  # Cache preflight for 10 minutes
)

# Include routers
app.include_router(api_router)
app.include_router(ws_router)

if __name__ == "__main__":
    reload = cfg.ENVIRONMENT == "development"
    uvicorn.run("main:app", host=cfg.HOST, port=cfg.PORT, reload=reload)
