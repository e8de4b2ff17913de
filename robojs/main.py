import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from robojs.api.router import api_router
from robojs.core.change_events import HubPublisher, install_change_capture
from robojs.core.config import get_settings
from robojs.core.db import SessionLocal
from robojs.core.fanout import get_hub

settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.on_event("startup")
async def start_fanout():
    hub = get_hub()
    hub.queue_size = settings.FANOUT_QUEUE_SIZE
    hub.bind_loop(asyncio.get_running_loop())
    # every commit made through the request sessions reaches the owner's sockets
    app.state.change_capture = install_change_capture(SessionLocal, HubPublisher(hub))
    logger.info("live fanout ready")


@app.on_event("shutdown")
def stop_fanout():
    capture = getattr(app.state, "change_capture", None)
    if capture is not None:
        capture.remove()
        app.state.change_capture = None
