from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from gomi_credits.core.security import SESSION_MAX_AGE, create_session_cookie
from gomi_credits.deps import SESSION_COOKIE_NAME, get_current_user
from gomi_credits.models.user import User
from gomi_credits.services import devices as devices_service
from gomi_credits.services import users as user_service

router = APIRouter()


class FirebaseAuthRequest(BaseModel):
    id_token: str
    device_id: str | None = None


def _user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "display_name": user.display_name,
        "phone_verified": user.antifraud.phone_verified,
        "credit_status": user.antifraud.credit_status,
    }


@router.post("/firebase")
async def auth_firebase(body: FirebaseAuthRequest, response: Response):
    """Exchange Firebase ID token for session; set httpOnly cookie. Records the device login when given."""
    claims = user_service.verify_firebase_id_token(body.id_token)
    user = await user_service.upsert_user_from_firebase(claims)
    if body.device_id:
        await devices_service.track_device_login(str(user.id), body.device_id)
    session_value = create_session_cookie(user_service.session_payload_for_user(user))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_value,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=False,  # set True in prod with HTTPS
        samesite="lax",
        path="/",
    )
    return {"user": _user_out(user)}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user. Requires session cookie."""
    return _user_out(user)
