from fastapi import APIRouter, Depends

from robojs.core.fanout import ConnectionHub, get_hub

router = APIRouter(tags=["health"])


@router.get("/health")
def health(hub: ConnectionHub = Depends(get_hub)):
    return {"ok": True, "connections": hub.connection_count}
