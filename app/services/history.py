import asyncio
import re

from app.models import database as db
from app.models.schemas import ChatMessage, SessionInfo

GREETING_PREFIX = re.compile(r"^(hi|hello|hey|hai|halo)\s*,?\s*", re.IGNORECASE)


def generate_session_title(first_message: str) -> str:
    """Short sidebar title derived from the opening message."""
    title = GREETING_PREFIX.sub("", first_message.strip())
    if len(title) > 40:
        title = title[:40] + "..."
    if len(title) < 3:
        title = "Chat Session"
    return title


async def get_chat_history(db_path: str, user_id: str, session_id: str | None = None) -> list[ChatMessage]:
    """Messages of one session, or of the ten most recent sessions flattened."""
    if session_id:
        session = await db.find_session(db_path, user_id, session_id)
        sessions = [session] if session else []
    else:
        sessions = await db.list_sessions(db_path, user_id, limit=10)

    messages: list[ChatMessage] = []
    for session in sessions:
        messages.extend(await db.get_messages(db_path, session.id))
    return messages


async def get_chat_sessions(db_path: str, user_id: str, limit: int = 20) -> list[SessionInfo]:
    sessions = await db.list_sessions(db_path, user_id, limit=limit)
    # Read-only and independent per session, so fetch them together.
    transcripts = await asyncio.gather(*(db.get_messages(db_path, s.id) for s in sessions))

    summaries = []
    for session, messages in zip(sessions, transcripts):
        first_user = next((m for m in messages if m.role == "user"), None)
        if first_user is not None:
            title_source = first_user.content
        elif messages:
            title_source = messages[0].content
        else:
            title_source = "Chat Session"
        summaries.append(
            SessionInfo(
                id=session.id,
                title=generate_session_title(title_source),
                last_message=messages[-1].content if messages else "No messages",
                timestamp=session.updated_at,
                message_count=len(messages),
            )
        )
    return summaries
