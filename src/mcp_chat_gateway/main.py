# FastAPI application entry point
# Defines the main app instance and core routes

import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from pydantic import BaseModel

from .api import chat
from .config import get_config
from .services.chat_store import InMemoryChatStore
from .services.config_manager import ConfigManager
from .services.llm_client import AnthropicStreamProvider
from .services.stream_executor import ResilientStreamExecutor

settings = get_config()

# Configure logging: console + rotating file under <log_dir>/backend.log
_log_formatter = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
logging.basicConfig(level=settings.log_level.upper(), format=_log_formatter)
try:
    run_dir = Path(settings.log_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(run_dir / 'backend.log', maxBytes=2_000_000, backupCount=3)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_log_formatter))
    logging.getLogger().addHandler(file_handler)
except OSError:
    # continue with console logging only
    pass
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    message: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("Initializing configuration manager...")
    config_manager = ConfigManager(settings.config_path)
    config = config_manager.load_config()
    logger.info(f"Loaded configuration: {len(config.default_endpoints)} default endpoint(s)")

    if not settings.has_anthropic_key:
        logger.warning("ANTHROPIC_API_KEY is not set; chat requests will fail")

    provider = AnthropicStreamProvider(
        api_key=settings.anthropic_api_key,
        base_url=settings.anthropic_base_url,
        api_version=settings.anthropic_version,
        timeout=settings.request_timeout,
    )

    app.state.config_manager = config_manager
    app.state.provider = provider
    app.state.executor = ResilientStreamExecutor(provider, max_attempts=settings.max_attempts)
    app.state.chat_store = InMemoryChatStore()
    logger.info("Startup complete")

    yield

    logger.info("Shutting down MCP Chat Gateway...")
    await provider.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="MCP Chat Gateway",
    description="Chat backend streaming model output with tools from MCP endpoints",
    version="0.1.0",
    lifespan=lifespan
)

# Include API routers
app.include_router(chat.router)


@app.get("/", operation_id="root")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to MCP Chat Gateway"}


@app.get("/health", response_model=HealthResponse, operation_id="health")
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Service is running")
