import json
import logging
import time
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from robojs.core.config import get_settings
from robojs.core.fanout import ConnectionHub, get_hub
from robojs.core.security import verify_signature
from robojs.schemas.fanout import PublishRequest

router = APIRouter(prefix="/internal", tags=["internal"])
logger = logging.getLogger(__name__)


def _parse_signature_headers(request: Request) -> Tuple[Optional[int], Optional[str]]:
    ts_raw = request.headers.get("x-robojs-timestamp")
    sig = request.headers.get("x-robojs-signature")
    if not ts_raw or not sig:
        return None, None
    try:
        ts = int(ts_raw)
    except ValueError:
        return None, None
    sig = sig.strip()
    if not sig:
        return None, None
    return ts, sig


@router.post("/events")
async def publish_event(request: Request, hub: ConnectionHub = Depends(get_hub)):
    """
    Hand a committed change from another process to this process' websocket hub.

    Auth headers (HMAC-SHA256):
    - x-robojs-timestamp: unix seconds
    - x-robojs-signature: hex(hmac_sha256(FANOUT_SECRET, f"{ts}.{raw_body}"))
    """
    settings = get_settings()
    if not settings.FANOUT_SECRET:
        raise HTTPException(status_code=500, detail="FANOUT_SECRET not configured")

    ts, sig = _parse_signature_headers(request)
    if ts is None or sig is None:
        raise HTTPException(status_code=401, detail="Missing or invalid signature headers")

    if abs(int(time.time()) - ts) > int(settings.FANOUT_MAX_SKEW_SECONDS or 0):
        raise HTTPException(status_code=401, detail="Signature timestamp expired")

    raw_body = await request.body()
    if not verify_signature(secret=settings.FANOUT_SECRET, ts=ts, body=raw_body, signature_hex=sig):
        raise HTTPException(status_code=401, detail="Bad signature")

    try:
        req = PublishRequest.model_validate(json.loads(raw_body or b"{}"))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid event: {exc}")

    delivered = hub.publish(req.user_id, req.event)
    logger.debug("internal event %s/%s user=%s delivered=%s", req.event.type, req.event.action, req.user_id, delivered)
    return {"ok": True, "delivered": delivered}
