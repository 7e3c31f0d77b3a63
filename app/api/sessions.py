from fastapi import APIRouter, Depends, HTTPException, Query
from app.dependecies import get_db_path, get_user_id
from app.models.database import (
    find_session,
    delete_session,
    get_messages,
)
from app.models.schemas import SessionInfo
from app.services.history import get_chat_sessions

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionInfo])
async def list_all_sessions(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    return await get_chat_sessions(db_path, user_id, limit=limit)


@router.get("/{session_id}")
async def get_session_detail(
    session_id: str,
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    session = await find_session(db_path, user_id, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await get_messages(db_path, session_id)
    return {
        "session_id": session.id,
        "created_at": session.created_at,
        "updated_at": session.updated_at,
        "messages": messages,
    }


@router.delete("/{session_id}", status_code=204)
async def remove_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    session = await find_session(db_path, user_id, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    await delete_session(db_path, session_id)
