from fastapi import Depends, Header, HTTPException, Request

from app.config import settings


def get_db_path() -> str:
    """Provide the database path to endpoint functions."""
    return settings.SQLITE_DB_PATH


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the authentication layer in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def get_catalog(request: Request):
    return request.app.state.catalog


def require_admin(user_id: str = Depends(get_user_id)) -> str:
    admins = {u.strip() for u in settings.ADMIN_USER_IDS.split(",") if u.strip()}
    if user_id not in admins:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id
