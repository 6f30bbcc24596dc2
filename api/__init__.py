"""REST and WebSocket surface of the token indexer.

- /tokens: list, search, detail, history, resolve and refresh
- /tokens/stats: dashboard totals
- /ws/tokens and /ws/blocks: live feeds from the realtime monitor

Background services are started by ``python -m api``; the app itself only
serves requests.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Token indexer API starting")
    yield
    logger.info("Token indexer API stopped")

app = FastAPI(
    title="Creator Token Indexer API",
    description="Discovery, classification and market data for creator tokens on Base",
    version=VERSION,
    lifespan=lifespan
)

# Read-only public data, any origin may call it
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

from .tokens import router as tokens_router  # noqa: E402
from .websockets import router as websocket_router, manager as feed_manager  # noqa: E402

app.include_router(tokens_router)
app.include_router(websocket_router)

@app.get("/")
async def root():
    """Service status and live feed subscriber counts."""
    return {
        "name": "Creator Token Indexer API",
        "version": VERSION,
        "status": "running",
        "subscribers": {channel: feed_manager.count(channel) for channel in feed_manager.subscribers},
    }
