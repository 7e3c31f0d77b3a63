from fastapi import APIRouter, Depends, Query
from app.dependecies import get_db_path, require_admin
from app.models.database import list_api_usage, list_users

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/users")
async def all_users(db_path: str = Depends(get_db_path)):
    return {"success": True, "data": await list_users(db_path)}


@router.get("/api-usage")
async def api_usage(
    limit: int = Query(default=100, ge=1, le=500),
    db_path: str = Depends(get_db_path),
):
    return {"success": True, "data": await list_api_usage(db_path, limit=limit)}
