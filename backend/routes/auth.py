"""
PROTRAIN CRM - Auth dependencies

Session issuance (login / logout) lives in the CRM auth service; this module
only resolves the bearer token of an incoming request to a user.
"""

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import db, now_iso, USERS_COLLECTION

security = HTTPBearer(auto_error=False)

ADMIN_ROLES = ("admin", "superadmin")


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Session expired")

    user = await db[USERS_COLLECTION].find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.get("active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    return user


async def require_admin(user: dict = Depends(get_current_user)):
    """Admin or superadmin access."""
    if user.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
