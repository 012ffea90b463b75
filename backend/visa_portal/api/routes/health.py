from fastapi import APIRouter, Depends

from visa_portal.api.deps import get_realtime
from visa_portal.realtime.hub import RealtimeHub

router = APIRouter()

@router.get("/")
def health(hub: RealtimeHub = Depends(get_realtime)):
    return {"status": "ok", "realtime": hub.stats()}
