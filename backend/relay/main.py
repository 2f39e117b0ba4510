"""Chat Relay Application.

This is the main entry point for the chat relay service: a real-time group
chat where clients join with a display name, exchange short messages, and
see who is online and who is typing. Messages are relayed, never stored.

Modules:
    - chat: WebSocket connection coordinator, roster and broadcasting
    - config: YAML/env configuration
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.chat.manager import manager
from relay.chat.router import router as chat_router
from relay.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn's access log records every status poll; not useful for chat debugging
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `server.log_level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.server.log_level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.server.log_level.upper())

    logger.info(
        f"Chat relay running on http://{config.server.host}:{config.server.port} "
        f"(allowed origins: {', '.join(config.server.allowed_origins)})"
    )

    yield  # Application runs here

    # Shutdown
    logger.info(
        f"Application shutdown complete ({manager.connection_count()} connections open)"
    )


# Create FastAPI application with metadata
app = FastAPI(
    title="Chat Relay API",
    description="Real-time group chat relay with presence and typing indicators",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)


@app.get("/")
async def status() -> dict:
    """Status endpoint reporting how many users are online.

    Returns:
        dict: Greeting and the current roster size.
    """
    return {
        "message": "Chat server is running!",
        "connectedUsers": manager.online_count(),
    }


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
