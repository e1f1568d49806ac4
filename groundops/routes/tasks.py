from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_active_session
from ..models.entities import Task, TaskStatus
from ..schemas.portal import TaskCreate, TaskStatusUpdate, TaskUpdate
from ..services import tasks as task_service
from ..services.session import PortalSession


router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=List[Task])
def list_tasks(
    status: Optional[TaskStatus] = Query(None),
    session: PortalSession = Depends(get_active_session),
):
    return session.visibility.tasks(status)


@router.post("", response_model=Task, status_code=201)
async def create_task(body: TaskCreate, session: PortalSession = Depends(get_active_session)):
    return await task_service.create_task(session, **body.model_dump())


@router.get("/{task_id}", response_model=Task)
def get_task(task_id: str, session: PortalSession = Depends(get_active_session)):
    return task_service.get_visible_task(session, task_id)


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, body: TaskUpdate, session: PortalSession = Depends(get_active_session)):
    return await task_service.update_task(session, task_id, body.model_dump(exclude_unset=True))


@router.post("/{task_id}/status", response_model=Task)
async def set_status(task_id: str, body: TaskStatusUpdate, session: PortalSession = Depends(get_active_session)):
    return await task_service.set_task_status(session, task_id, body.status)


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: str, session: PortalSession = Depends(get_active_session)):
    await task_service.delete_task(session, task_id)
