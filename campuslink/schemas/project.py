"""Project post, join-request, and task Pydantic schemas."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from campuslink.models.join_request import RequestStatus
from campuslink.models.project_post import Visibility
from campuslink.models.project_task import TaskStatus
from campuslink.services.cooldown import as_utc


class ProjectCreate(BaseModel):
    """Fields submitted when posting a project."""
    title: str = Field(min_length=1, max_length=300)
    description: str = Field(min_length=1)
    skills_required: List[str]
    estimated_duration: str = Field(min_length=1, max_length=100)
    team_size: int = Field(default=1, ge=1)
    visibility: Visibility = Visibility.PUBLIC
    category: str = "Tech Projects"
    tags: List[str] = []

    @field_validator("skills_required", "tags", mode="before")
    @classmethod
    def _split_csv(cls, value):
        # "a, b, c" from form posts as well as JSON lists
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("skills_required")
    @classmethod
    def _skills_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one skill is required")
        return value

    @field_validator("title", "description", "estimated_duration")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class JoinRequestOut(BaseModel):
    id: int
    user_id: int
    status: RequestStatus
    request_time: datetime
    removal_time: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("request_time", "removal_time")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class JoinDecision(BaseModel):
    action: str


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    status: TaskStatus

    model_config = {"from_attributes": True}


class ProjectOut(BaseModel):
    """Project post with its roster and full join-request ledger."""
    id: int
    author_id: int
    title: str
    description: str
    content: str
    category: str
    tags: List[str] = []
    visibility: Visibility
    skills_required: List[str] = []
    estimated_duration: str
    team_size: int
    team_members: List[int] = []
    team_formed: bool
    join_requests: List[JoinRequestOut] = []
    tasks: List[TaskOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TeamActionOut(BaseModel):
    """Acknowledgement for request / approve / deny / remove."""
    message: str
    request: Optional[JoinRequestOut] = None
    team_members: List[int]
    team_formed: bool
