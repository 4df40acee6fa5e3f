from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gomi_credits.deps import get_current_user
from gomi_credits.models.user import User
from gomi_credits.services import devices as devices_service

router = APIRouter()


class DeviceLoginRequest(BaseModel):
    device_id: str = Field(..., min_length=1)


@router.post("/login")
async def device_login(body: DeviceLoginRequest, user: User = Depends(get_current_user)):
    """Record that the current user signed in on this device."""
    device = await devices_service.track_device_login(str(user.id), body.device_id)
    return {
        "device_id": device.device_id,
        "accounts_seen": len(device.login_history),
        "abuse_flagged": device.abuse_flagged,
    }
