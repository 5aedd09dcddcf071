"""
EV Dealer Hub - Routes Auth
Session lookup and role guards. Sessions are issued by the storefront;
this API only reads them.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import now_iso
from services.dealers import get_dealer_for_user
from services.errors import Unauthorized, Forbidden, NotFound

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Resolve the logged-in user from the bearer token."""
    if not credentials:
        raise Unauthorized("Not authenticated", code="not_authenticated")

    db = request.app.state.db
    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        raise Unauthorized("Session expired", code="session_expired")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )
    if not user:
        raise Unauthorized("User not found", code="user_not_found")

    if not user.get("is_active", True):
        raise Forbidden("Account disabled", code="account_disabled")

    user.setdefault("role", "customer")
    if user["role"] == "dealer":
        dealer = await get_dealer_for_user(db, user["id"])
        user["dealer_id"] = dealer["id"] if dealer else None
    return user


async def get_optional_user(request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Same as get_current_user for public routes; None when anonymous."""
    if not credentials:
        return None
    return await get_current_user(request, credentials)


async def require_admin(user: dict = Depends(get_current_user)):
    """Admin access."""
    if user.get("role") != "admin":
        raise Forbidden("Admin access required", code="admin_required")
    return user


async def require_dealer(user: dict = Depends(get_current_user)):
    """Dealer with a dealer record."""
    if user.get("role") != "dealer":
        raise Forbidden("Dealer access required", code="dealer_required")
    if not user.get("dealer_id"):
        raise NotFound("Dealer not found", code="dealer_not_found")
    return user


async def require_dealer_or_admin(user: dict = Depends(get_current_user)):
    if user.get("role") == "admin":
        return user
    return await require_dealer(user)


# ==================== SESSION ====================

@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    """Current user with role (and dealer_id for dealers)."""
    return user
