from fastapi import APIRouter, Depends, Query
from app.dependecies import get_db_path, get_orchestrator, get_user_id
from app.models.schemas import ChatRequest
from app.services.chat import ChatOrchestrator
from app.services.history import get_chat_history, get_chat_sessions

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/send")
async def send_message(
    request: ChatRequest,
    user_id: str = Depends(get_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.handle_chat_message(
        user_id,
        request.message,
        is_new_chat=request.is_new_chat,
        session_id=request.session_id,
    )
    return {"success": True, "data": result.model_dump(by_alias=True, exclude_none=True)}


@router.get("/history")
async def chat_history(
    session_id: str | None = Query(default=None, alias="sessionId"),
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    messages = await get_chat_history(db_path, user_id, session_id)
    return {
        "success": True,
        "data": [
            {
                "id": m.id,
                "role": m.role,
                "content": m.content,
                "timestamp": m.timestamp,
                "link": m.link,
                "shopifyProducts": [p.model_dump(by_alias=True) for p in m.shopify_products] if m.shopify_products else None,
            }
            for m in messages
        ],
    }


@router.get("/sessions")
async def chat_sessions(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    sessions = await get_chat_sessions(db_path, user_id)
    return {"success": True, "data": [s.model_dump(by_alias=True) for s in sessions]}


@router.get("/sensay-history")
async def sensay_history(
    user_id: str = Depends(get_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    items = await orchestrator.replica_chat_history(user_id)
    return {"success": True, "type": "chat_history", "items": items}
