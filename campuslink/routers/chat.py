"""
Team chat router — history, posting, and a WebSocket stream per project.

Only the project creator and current team members may read or post.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from campuslink.database import async_session, get_db
from campuslink.errors import Forbidden, NotFound
from campuslink.models.project_post import ProjectPost
from campuslink.models.user import User
from campuslink.routers.auth import decode_user_id, require_user
from campuslink.schemas.chat import ChatHistory, ChatMessageOut, MessageCreate
from campuslink.services.chat import get_history, manager, message_payload, post_message
from campuslink.services.team_formation import TeamFormationEngine, get_team_engine

router = APIRouter(prefix="/projects", tags=["chat"])


async def _load_for_chat(
    engine: TeamFormationEngine, db: AsyncSession, project_id: int, user_id: int
) -> ProjectPost:
    project = await engine.load(db, project_id)
    if not project.has_team_access(user_id):
        raise Forbidden("Only the project creator or team members can use the team chat.")
    return project


@router.get("/{project_id}/messages", response_model=ChatHistory)
async def get_chat_history(
    project_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Returns the last 50 messages of the project's team chat."""
    await _load_for_chat(engine, db, project_id, current_user.id)
    return {"messages": await get_history(db, project_id)}


@router.post(
    "/{project_id}/messages",
    response_model=ChatMessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    project_id: int,
    payload: MessageCreate,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Post to the team chat and push it to connected sockets."""
    sender_name = current_user.full_name
    sender_id = current_user.id
    await _load_for_chat(engine, db, project_id, sender_id)

    message = await post_message(db, project_id, payload.content, sender_id=sender_id)
    data = message_payload(message, sender_name)
    await manager.broadcast(data, project_id)
    return data


@router.websocket("/{project_id}/chat/ws")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    project_id: int,
    token: Optional[str] = Query(None),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """
    Live team chat.  The JWT travels as ``?token=`` since browsers cannot
    set headers on the handshake; access is re-checked on every message so
    a removed member is cut off.
    """
    await manager.connect(websocket, project_id)
    user_id = decode_user_id(token)

    async def allowed(db: AsyncSession) -> bool:
        try:
            await _load_for_chat(engine, db, project_id, user_id or 0)
        except (NotFound, Forbidden):
            return False
        return True

    try:
        async with async_session() as db:
            if not user_id or not await allowed(db):
                manager.disconnect(websocket, project_id)
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return
            user = await db.get(User, user_id)
            sender_name = user.full_name if user else "Unknown User"

        while True:
            data = await websocket.receive_text()
            if not data.strip():
                continue

            async with async_session() as db:
                if not await allowed(db):
                    manager.disconnect(websocket, project_id)
                    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                    return
                message = await post_message(db, project_id, data.strip(), sender_id=user_id)

            await manager.broadcast(message_payload(message, sender_name), project_id)

    except WebSocketDisconnect:
        manager.disconnect(websocket, project_id)
