"""Project team chat: one room per project, message history and live fan-out."""

import logging
from typing import Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campuslink.models.chat_room import ChatRoom
from campuslink.models.message import Message
from campuslink.models.user import User
from campuslink.services.cooldown import as_utc

logger = logging.getLogger(__name__)

BOT_NAME = "CampusLink Bot"
HISTORY_LIMIT = 50


# ==============================================================================
# Connection Manager
# ==============================================================================

class ConnectionManager:
    def __init__(self):
        # project_id -> open sockets
        self.active_connections: Dict[int, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, project_id: int):
        await websocket.accept()
        self.active_connections.setdefault(project_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, project_id: int):
        sockets = self.active_connections.get(project_id)
        if sockets is None:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self.active_connections[project_id]

    async def broadcast(self, message: dict, project_id: int):
        for connection in list(self.active_connections.get(project_id, [])):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError, ConnectionError) as exc:
                logger.warning("Dropping chat socket on project %s: %s", project_id, exc)
                self.disconnect(connection, project_id)


manager = ConnectionManager()


# ==============================================================================
# Rooms and messages
# ==============================================================================

def message_payload(message: Message, sender_name: str) -> dict:
    return {
        "id": message.id,
        "content": message.content,
        "sender_id": message.sender_id,
        "sender_name": sender_name,
        "is_bot": message.is_bot,
        "timestamp": as_utc(message.created_at).isoformat(),
    }


async def get_room(db: AsyncSession, project_id: int) -> Optional[ChatRoom]:
    result = await db.execute(select(ChatRoom).where(ChatRoom.project_id == project_id))
    return result.scalar_one_or_none()


async def ensure_room(db: AsyncSession, project_id: int) -> ChatRoom:
    room = await get_room(db, project_id)
    if room is not None:
        return room
    room = ChatRoom(project_id=project_id)
    db.add(room)
    try:
        await db.flush()
    except IntegrityError:
        # another request opened the room first
        await db.rollback()
        room = await get_room(db, project_id)
    else:
        logger.info("Opened team chat for project %s", project_id)
    return room


async def post_message(
    db: AsyncSession,
    project_id: int,
    content: str,
    sender_id: Optional[int] = None,
    is_bot: bool = False,
) -> Message:
    room = await ensure_room(db, project_id)
    message = Message(chat_room_id=room.id, sender_id=sender_id, content=content, is_bot=is_bot)
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message


async def announce_new_member(db: AsyncSession, project_id: int, member_name: str) -> None:
    """Open the team chat if needed and greet an approved member.

    Runs after the approval has been committed; a failure is logged and
    rolled back without touching the roster.
    """
    try:
        message = await post_message(
            db, project_id, f"👋 {member_name} joined the team", is_bot=True
        )
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not announce new member on project %s", project_id)
        return
    await manager.broadcast(message_payload(message, BOT_NAME), project_id)


async def get_history(db: AsyncSession, project_id: int) -> List[dict]:
    """Last ``HISTORY_LIMIT`` messages, oldest first."""
    room = await get_room(db, project_id)
    if room is None:
        return []

    result = await db.execute(
        select(Message)
        .where(Message.chat_room_id == room.id)
        .order_by(desc(Message.created_at), desc(Message.id))
        .limit(HISTORY_LIMIT)
    )
    messages = list(result.scalars().all())
    messages.reverse()

    sender_ids = {m.sender_id for m in messages if m.sender_id is not None}
    names: Dict[int, str] = {}
    if sender_ids:
        res_users = await db.execute(select(User).where(User.id.in_(sender_ids)))
        names = {u.id: u.full_name for u in res_users.scalars()}

    return [
        message_payload(
            m, BOT_NAME if m.is_bot else names.get(m.sender_id, "Unknown User")
        )
        for m in messages
    ]
