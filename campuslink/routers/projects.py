"""Projects router – project posts, join requests, team roster, task board."""

import json
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campuslink.database import get_db
from campuslink.errors import Forbidden, InvalidArgument, NotFound
from campuslink.models.join_request import RequestStatus
from campuslink.models.project_post import ProjectPost
from campuslink.models.project_task import ProjectTask
from campuslink.models.user import User
from campuslink.routers.auth import require_user
from campuslink.schemas.project import (
    JoinDecision,
    JoinRequestOut,
    ProjectCreate,
    ProjectOut,
    TaskCreate,
    TaskOut,
    TaskStatusUpdate,
    TeamActionOut,
)
from campuslink.services.chat import announce_new_member
from campuslink.services.ledger import JoinRequestLedger
from campuslink.services.notifications import (
    notify_user,
    project_link,
    send_join_decision_email,
    send_join_request_email,
    send_removal_email,
)
from campuslink.services.team_formation import TeamChange, TeamFormationEngine, get_team_engine

router = APIRouter(prefix="/projects", tags=["projects"])


async def _get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


def _team_ack(message: str, change: TeamChange) -> TeamActionOut:
    return TeamActionOut(
        message=message,
        request=JoinRequestOut.model_validate(change.request) if change.request else None,
        team_members=change.project.team_members,
        team_formed=change.project.team_formed,
    )


# ═══════════════════════════════════════════════════════════════
#  Project posts
# ═══════════════════════════════════════════════════════════════

@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Post a new project; the author becomes its creator."""
    project = ProjectPost(
        author_id=current_user.id,
        content=payload.description,
        category=payload.category,
        tags_json=json.dumps(payload.tags),
        visibility=payload.visibility,
        title=payload.title,
        description=payload.description,
        skills_required_json=json.dumps(payload.skills_required),
        estimated_duration=payload.estimated_duration,
        team_size=payload.team_size,
        members=[],
        join_requests=[],
        tasks=[],
    )
    db.add(project)
    await db.commit()
    return await engine.load(db, project.id)


@router.get("/{project_id}", response_model=ProjectOut)
async def read_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Project with roster, team-formed flag, and the full join-request ledger."""
    return await engine.load(db, project_id)


# ═══════════════════════════════════════════════════════════════
#  Join requests
# ═══════════════════════════════════════════════════════════════

@router.post(
    "/{project_id}/join-requests",
    response_model=TeamActionOut,
    status_code=status.HTTP_201_CREATED,
)
async def request_to_join(
    project_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Ask to join a project's team."""
    requester_name = current_user.full_name
    change = await engine.request_to_join(db, project_id, current_user.id)
    ack = _team_ack("Request to join the project sent successfully.", change)
    creator_id, title = change.project.author_id, change.project.title

    await notify_user(
        db,
        creator_id,
        f"🙋 {requester_name} requested to join <b>{title}</b>",
        project_link(project_id),
    )
    creator = await _get_user(db, creator_id)
    if creator:
        background_tasks.add_task(
            send_join_request_email,
            recipient_email=creator.email,
            project_id=project_id,
            project_title=title,
            requester_name=requester_name,
        )
    return ack


@router.get("/{project_id}/join-requests", response_model=List[JoinRequestOut])
async def list_join_requests(
    project_id: int,
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Creator-only view of the ledger, optionally narrowed to one status."""
    project = await engine.load(db, project_id)
    if project.author_id != current_user.id:
        raise Forbidden("Only the project creator can view join requests.")
    ledger = JoinRequestLedger(project.join_requests)
    if status_filter is not None:
        return ledger.with_status(status_filter)
    return list(ledger)


@router.patch("/{project_id}/join-requests/{request_id}", response_model=TeamActionOut)
async def manage_join_request(
    project_id: int,
    request_id: int,
    decision: JoinDecision,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Creator approves or denies a pending join request."""
    change = await engine.manage_join_request(
        db, project_id, request_id, decision.action, current_user.id
    )
    verdict = change.request.status.value
    ack = _team_ack(f"Request {verdict} successfully.", change)
    requester_id, title = change.request.user_id, change.project.title
    approved = verdict == RequestStatus.APPROVED.value

    icon = "✅" if approved else "❌"
    await notify_user(
        db,
        requester_id,
        f"{icon} Your request to join <b>{title}</b> was {verdict}",
        project_link(project_id),
    )
    requester = await _get_user(db, requester_id)
    if requester:
        requester_email, requester_name = requester.email, requester.full_name
        if approved:
            await announce_new_member(db, project_id, requester_name)
        background_tasks.add_task(
            send_join_decision_email,
            recipient_email=requester_email,
            project_id=project_id,
            project_title=title,
            approved=approved,
        )
    return ack


@router.delete("/{project_id}/members/{user_id}", response_model=TeamActionOut)
async def remove_team_member(
    project_id: int,
    user_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Creator removes a member; the member may re-request after the cooldown."""
    change = await engine.remove_team_member(db, project_id, user_id, current_user.id)
    ack = _team_ack("Team member removed successfully.", change)
    title = change.project.title

    await notify_user(
        db,
        user_id,
        f"🚪 You were removed from <b>{title}</b>",
        project_link(project_id),
    )
    removed = await _get_user(db, user_id)
    if removed:
        background_tasks.add_task(
            send_removal_email,
            recipient_email=removed.email,
            project_id=project_id,
            project_title=title,
        )
    return ack


# ═══════════════════════════════════════════════════════════════
#  Task board
# ═══════════════════════════════════════════════════════════════

def _require_team_access(project: ProjectPost, user_id: int) -> None:
    if not project.has_team_access(user_id):
        raise Forbidden("Only the project creator or team members can manage tasks.")


@router.post("/{project_id}/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def add_task(
    project_id: int,
    payload: TaskCreate,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Add a task to the project's board."""
    project = await engine.load(db, project_id)
    _require_team_access(project, current_user.id)
    if payload.assigned_to is not None:
        if not project.has_team_access(payload.assigned_to):
            raise InvalidArgument("Tasks can only be assigned to the creator or team members.")

    task = ProjectTask(
        project_id=project_id,
        title=payload.title,
        description=payload.description,
        assigned_to=payload.assigned_to,
        due_date=payload.due_date,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


@router.patch("/{project_id}/tasks/{task_id}", response_model=TaskOut)
async def update_task_status(
    project_id: int,
    task_id: int,
    payload: TaskStatusUpdate,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    engine: TeamFormationEngine = Depends(get_team_engine),
):
    """Move a task between Not Started / In Progress / Completed."""
    project = await engine.load(db, project_id)
    _require_team_access(project, current_user.id)

    result = await db.execute(
        select(ProjectTask).where(ProjectTask.id == task_id, ProjectTask.project_id == project_id)
    )
    task = result.scalar_one_or_none()
    if not task:
        raise NotFound("Task not found.")

    task.status = payload.status
    await db.commit()
    return task
