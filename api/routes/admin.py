"""
Admin API Endpoints for the barbershop front desk

Provides REST endpoints for:
- Authentication (JWT)
- Queue management (complete, cancel, notes, renumber)
- Turn history with filtering and pagination
"""

import hmac
import logging
import time
from typing import Annotated, Any, Literal
from uuid import uuid4

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.hash import bcrypt
from pydantic import BaseModel

from api.dependencies import get_turn_service
from api.models.turns import LoginRequest, UpdateNotesRequest
from database.models import TurnStatus
from queue_engine import Actor, TurnService, admin_actor
from queue_engine.presentation import turn_to_dict
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

TurnServiceDep = Annotated[TurnService, Depends(get_turn_service)]

# =============================================================================
# Security
# =============================================================================

security = HTTPBearer(auto_error=False)  # auto_error=False allows cookie fallback

JWT_ALGORITHM = "HS256"
JWT_COOKIE_NAME = "admin_token"  # HttpOnly cookie name
JWT_COOKIE_SAMESITE = "lax"


def get_jwt_secret() -> str:
    # Startup validation normally catches a missing secret first
    secret = get_settings().ADMIN_JWT_SECRET
    if not secret:
        raise RuntimeError(
            "ADMIN_JWT_SECRET is empty; admin tokens cannot be signed or verified"
        )
    return secret


def verify_admin_password(password_input: str, password_plain: str | None, password_hash: str | None) -> bool:
    """A configured bcrypt hash wins over the plain password; a broken hash never matches."""
    if password_hash:
        try:
            return bcrypt.verify(password_input, password_hash)
        except Exception as e:
            logger.error(f"ADMIN_PASSWORD_HASH is not a usable bcrypt hash: {e}")
            return False

    if password_plain:
        # Constant-time comparison; bytes so non-ASCII passwords work
        return hmac.compare_digest(
            password_input.encode("utf-8"),
            password_plain.encode("utf-8")
        )

    return False


def create_access_token(username: str) -> tuple[str, str]:
    """Sign a front-desk token; the jti is what logout revokes."""
    now = int(time.time())
    expires = now + get_settings().JWT_EXPIRATION_HOURS * 3600
    jti = str(uuid4())

    payload = {
        "sub": username,
        "exp": expires,
        "iat": now,
        "jti": jti,
        "type": "admin",
    }
    token = jwt.encode(payload, get_jwt_secret(), algorithm=JWT_ALGORITHM)
    return token, jti


async def check_token_blacklist(jti: str) -> bool:
    """True when the front desk logged this token out."""
    from shared.redis_client import get_redis_client

    try:
        redis_client = get_redis_client()
        result = await redis_client.get(f"token_blacklist:{jti}")
        return result is not None
    except Exception as e:
        logger.error(f"Token revocation lookup failed: {e}")
        # Redis down: treat the token as not revoked
        return False


async def add_token_to_blacklist(jti: str, exp: int) -> bool:
    """Revoke a token until it would have expired anyway. False when Redis is unreachable."""
    from shared.redis_client import get_redis_client

    try:
        redis_client = get_redis_client()
        ttl = max(0, exp - int(time.time()))
        if ttl > 0:
            await redis_client.setex(f"token_blacklist:{jti}", ttl, "1")
            logger.info(f"Token {jti[:8]}... added to blacklist (TTL: {ttl}s)")
            return True
        return False
    except Exception as e:
        logger.error(f"Token revocation write failed: {e}")
        return False


def verify_token(token: str) -> dict[str, Any]:
    """Decoded claims of a valid admin token, else 401."""
    try:
        payload = jwt.decode(token, get_jwt_secret(), algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
        )
    if payload.get("type") != "admin":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )
    return payload


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    admin_token: Annotated[str | None, Cookie()] = None,
) -> dict[str, Any]:
    """Claims of the logged-in front-desk user. The cookie is checked before the Bearer header."""
    token = admin_token

    if not token and credentials:
        token = credentials.credentials

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(token)

    jti = payload.get("jti")
    if jti and await check_token_blacklist(jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return payload


async def get_admin_actor(
    current_user: Annotated[dict, Depends(get_current_user)],
) -> Actor:
    """Queue engine actor for an authenticated admin."""
    return admin_actor(current_user.get("sub"))


AdminActorDep = Annotated[Actor, Depends(get_admin_actor)]


# =============================================================================
# Response Models
# =============================================================================


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    username: str
    role: str = "admin"


# =============================================================================
# Auth Endpoints
# =============================================================================


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest, response: Response):
    """Front-desk login. The token comes back in the body and as an HttpOnly cookie."""
    settings = get_settings()

    if not hmac.compare_digest(request.username.encode("utf-8"), settings.ADMIN_USERNAME.encode("utf-8")):
        logger.warning("Admin login rejected: unknown username")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    if not verify_admin_password(
        request.password,
        settings.ADMIN_PASSWORD or None,
        settings.ADMIN_PASSWORD_HASH or None,
    ):
        logger.warning("Admin login rejected: wrong password")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    token, _jti = create_access_token(request.username)
    max_age = settings.JWT_EXPIRATION_HOURS * 3600

    response.set_cookie(
        key=JWT_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite=JWT_COOKIE_SAMESITE,
        max_age=max_age,
        path="/api/admin",
    )

    logger.info("Admin logged in", extra={"actor_role": "admin"})
    return LoginResponse(access_token=token, expires_in=max_age)


@router.post("/auth/logout")
async def logout(
    response: Response,
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Clear the cookie and revoke the token's jti in Redis."""
    jti = current_user.get("jti")
    exp = current_user.get("exp")

    response.delete_cookie(
        key=JWT_COOKIE_NAME,
        path="/api/admin",
        httponly=True,
        samesite=JWT_COOKIE_SAMESITE,
    )

    if not jti or not exp:
        logger.warning("Logout attempted with token missing jti/exp claims")
        return {"message": "Logged out (token will remain valid until expiration)"}

    if await add_token_to_blacklist(jti, exp):
        return {"message": "Successfully logged out"}
    # Don't expose internal errors
    return {"message": "Logged out"}


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: Annotated[dict, Depends(get_current_user)]):
    return UserResponse(username=current_user.get("sub", ""))


# =============================================================================
# Turn Endpoints
# =============================================================================


@router.get("/turns")
async def list_turns(
    actor: AdminActorDep,
    service: TurnServiceDep,
    status_filter: Annotated[TurnStatus | None, Query(alias="status")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    sort_by: Annotated[
        Literal["created_at", "turn_number", "completed_at", "cancelled_at"], Query()
    ] = "created_at",
    sort_order: Annotated[Literal["asc", "desc"], Query()] = "desc",
):
    """All turns (history included), newest first by default."""
    result = await service.list_turns(
        actor,
        status=status_filter,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "success": True,
        "data": {
            "turns": [turn_to_dict(t, include_notes=True) for t in result.turns],
            "pagination": {
                "current_page": result.page,
                "total_pages": result.total_pages,
                "total_items": result.total,
                "items_per_page": result.limit,
            },
        },
    }


@router.get("/turns/waiting")
async def list_waiting_turns(actor: AdminActorDep, service: TurnServiceDep):
    """Waiting turns with contact details, in queue order."""
    turns = await service.list_waiting()
    return {
        "success": True,
        "data": {"turns": [turn_to_dict(t, include_notes=True) for t in turns]},
    }


@router.post("/turns/renumber")
async def renumber_turns(actor: AdminActorDep, service: TurnServiceDep):
    renumbered = await service.renumber(actor)
    return {"success": True, "data": {"renumbered": renumbered}}


@router.get("/turns/{turn_id}")
async def get_turn(turn_id: str, actor: AdminActorDep, service: TurnServiceDep):
    turn = await service.get_by_id(turn_id)
    return {"success": True, "data": {"turn": turn_to_dict(turn, include_notes=True)}}


@router.put("/turns/{turn_id}/complete")
async def complete_turn(turn_id: str, actor: AdminActorDep, service: TurnServiceDep):
    """
    Mark a waiting turn as served; the rest of the queue moves up.

    **Errors:**
    - **404**: TURN_NOT_FOUND
    - **409**: INVALID_TRANSITION (turn is not waiting)
    """
    turn = await service.complete_turn(turn_id, actor)
    return {
        "success": True,
        "data": {"turn": turn_to_dict(turn, include_notes=True)},
        "message": f"تم إكمال الدور #{turn.turn_number} بنجاح",
    }


@router.put("/turns/{turn_id}/cancel")
async def cancel_turn(turn_id: str, actor: AdminActorDep, service: TurnServiceDep):
    """
    Cancel a waiting (or confirmed) turn; the rest of the queue moves up.

    **Errors:**
    - **404**: TURN_NOT_FOUND
    - **409**: INVALID_TRANSITION
    """
    turn = await service.cancel_turn(turn_id, actor)
    return {
        "success": True,
        "data": {"turn": turn_to_dict(turn, include_notes=True)},
        "message": f"تم إلغاء الدور #{turn.turn_number} بنجاح",
    }


@router.put("/turns/{turn_id}/notes")
async def update_turn_notes(
    turn_id: str,
    request: UpdateNotesRequest,
    actor: AdminActorDep,
    service: TurnServiceDep,
):
    turn = await service.update_notes(turn_id, request.notes, actor)
    return {
        "success": True,
        "data": {"turn": turn_to_dict(turn, include_notes=True)},
        "message": "تم تحديث الملاحظات بنجاح",
    }
