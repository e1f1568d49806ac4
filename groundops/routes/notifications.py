from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from ..auth.security import get_active_session, resolve_session
from ..models.entities import AppNotification
from ..services import messaging
from ..services.session import PortalSession


router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=List[AppNotification])
def list_notifications(session: PortalSession = Depends(get_active_session)):
    return session.notifications.items()


@router.get("/notifications/unread-count")
def unread_count(session: PortalSession = Depends(get_active_session)):
    return {"count": session.notifications.unread_count}


@router.get("/notifications/toast", response_model=Optional[AppNotification])
def active_toast(session: PortalSession = Depends(get_active_session)):
    return session.notifications.active_toast()


@router.post("/notifications/read-all")
def read_all(session: PortalSession = Depends(get_active_session)):
    session.notifications.mark_all_read()
    return {"status": "ok"}


@router.post("/notifications/{notification_id}/read", response_model=AppNotification)
def mark_read(notification_id: str, session: PortalSession = Depends(get_active_session)):
    return session.notifications.mark_read(notification_id)


@router.delete("/notifications/{notification_id}", status_code=204)
def dismiss(notification_id: str, session: PortalSession = Depends(get_active_session)):
    session.notifications.dismiss(notification_id)


@router.websocket("/ws/notifications")
async def ws_notifications(websocket: WebSocket, token: Optional[str] = Query(None)):
    manager = websocket.app.state.sessions
    hub = websocket.app.state.hub
    if not token:
        await websocket.close(code=4401)
        return
    try:
        session = resolve_session(manager, token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    await hub.connect(session.id, websocket)
    await hub.send_to_session(
        session.id,
        "unread_count",
        {"notifications": session.notifications.unread_count, "messages": messaging.unread_count(session)},
    )
    try:
        while True:
            data = await websocket.receive_text()
            # Accept keep-alives or simple pings; ignore content for now
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(session.id, websocket)
