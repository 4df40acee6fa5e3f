from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from gomi_credits.core import clock
from gomi_credits.core.audit import log_event
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import ConflictError, InvalidArgumentError, UnauthorizedError
from gomi_credits.core.logging import get_logger
from gomi_credits.models.user import User
from gomi_credits.services import antifraud as antifraud_service

log = get_logger(__name__)


def verify_firebase_id_token(token: str) -> dict:
    """Verify a Firebase Auth ID token; return decoded claims (sub, email, phone_number, ...)."""
    settings = get_settings()
    try:
        return id_token.verify_firebase_token(
            token,
            google_requests.Request(),
            audience=settings.firebase_project_id or None,
        )
    except ValueError as e:
        raise UnauthorizedError(f"Invalid Firebase token: {e}") from e


async def create_user(firebase_uid: str, email: str | None = None, display_name: str = "") -> User:
    """New account: zeroed credit pools and NOT_CLAIMED anti-abuse state, created together."""
    now = clock.utcnow()
    user = User(
        firebase_uid=firebase_uid,
        email=email,
        display_name=display_name,
        last_login_at=now,
        created_at=now,
        updated_at=now,
    )
    await user.insert()
    log.info("user_created", user_id=str(user.id))
    await log_event(str(user.id), "user_created", "user", str(user.id))
    return user


async def upsert_user_from_firebase(claims: dict) -> User:
    firebase_uid = claims.get("user_id") or claims.get("sub")
    if not firebase_uid:
        raise InvalidArgumentError("Missing sub in token")
    email = claims.get("email")
    name = claims.get("name") or ""

    user = await User.find_one(User.firebase_uid == firebase_uid)
    if user:
        await User.find_one(User.id == user.id).update(
            {"$set": {"email": email, "display_name": name, "last_login_at": clock.utcnow()}}
        )
        log.info("user_login", user_id=str(user.id))
    else:
        user = await create_user(firebase_uid, email=email, display_name=name)

    # Phone-auth tokens carry a verified number.
    phone_number = claims.get("phone_number")
    if phone_number and not user.antifraud.phone_verified:
        try:
            user = await antifraud_service.verify_phone(user.id, phone_number)
        except ConflictError:
            log.warning("phone_claim_skipped", user_id=str(user.id))
    return await User.get(user.id)


def session_payload_for_user(user: User) -> dict:
    return {"user_id": str(user.id), "session_version": user.session_version}
