# api/main.py
from dotenv import load_dotenv
import os

env = os.getenv("APP_ENV", "local")
if env == "local":
    load_dotenv(".env.local")
else:
    load_dotenv(".env")

from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging
from database.db import init_db
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.rate_limit import RateLimitMiddleware
from api.routers import (
    health,
    analysis,
    chat,
    concept_map,
    history,
)
from services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)
logger.info(f"Loaded environment: {env}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Prism backend, initializing DB")
    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise
    yield
    SessionRegistry.clear()
    logger.info("Shutting down Prism backend")


app = FastAPI(
    title="Prism - Research Paper Analysis API",
    version="1.0.0",
    description="Staged LLM analysis of research papers with a grounded chat assistant.",
    lifespan=lifespan
)

# CORS Configuration
origins = []
if env == "local":
    origins = ["http://localhost:3000", "http://localhost:5173"]  # Common dev ports
else:
    origins_str = os.getenv("ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
rate_limiter = RateLimitMiddleware()
app.middleware("http")(rate_limiter)

app.include_router(health.router)
app.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(concept_map.router, prefix="/concept-map", tags=["Concept Map"])
app.include_router(history.router, prefix="/history", tags=["History"])


@app.get("/")
async def root():
    return {"message": "Prism backend running"}
