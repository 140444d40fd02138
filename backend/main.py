"""
Idea Engine - AI Router Service
A lightweight FastAPI backend that:
1. Routes agent AI calls across OpenAI, Anthropic and Gemini
2. Enforces a shared daily/monthly AI budget
3. Caches responses per task type
4. Records usage to the ai_model_metrics ledger
"""
import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from constants import __version__

logger = logging.getLogger(__name__)

# ==============================================================================
# ENVIRONMENT & LOGGING
# ==============================================================================
load_dotenv()


def configure_logging() -> None:
    """Root logger from LOG_LEVEL; JSON lines when JSON_LOGGING=true."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler()
    if os.getenv("JSON_LOGGING", "false").lower() == "true":
        from pythonjsonlogger import jsonlogger

        handler.setFormatter(jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s',
            rename_fields={"asctime": "timestamp", "levelname": "level"}
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
    logging.root.handlers = [handler]
    logging.root.setLevel(level)


configure_logging()
# ==============================================================================

from ai_router import build_ai_router  # noqa: E402
from ai_providers import get_all_provider_status  # noqa: E402
from middleware import MetricsMiddleware  # noqa: E402
from router_settings import RouterSettings  # noqa: E402
from routers import ai_cost, ai_gateway, health  # noqa: E402


# ============== FastAPI App ==============

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Idea Engine AI Router starting...")
    logger.info("=" * 60)

    settings = RouterSettings.from_env()
    logger.info("Configuration: %r", settings)

    for s in get_all_provider_status():
        tag = "[OK]" if s["configured"] else "[!]"
        logger.info(f"  {tag} {s['name']} ({s['env_key']})")

    app.state.settings = settings
    app.state.ai_router = await build_ai_router(settings)
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down AI router...")
    await app.state.ai_router.close()
    app.state.ai_router = None


app = FastAPI(
    title="Idea Engine AI Router",
    description="Multi-provider AI request routing with budget and cache control",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)

app.include_router(health.router)
app.include_router(ai_gateway.router)
app.include_router(ai_cost.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
