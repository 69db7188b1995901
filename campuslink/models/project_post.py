"""Project post — a post flagged as a team-recruitment project.

The post row is the consistency unit for team formation: the roster
(``members``) and the join-request ledger (``join_requests``) hang off it,
and ``version`` is bumped on every write so concurrent writers fail with
``StaleDataError`` instead of overwriting each other.
"""

import enum
import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campuslink.database import Base
from campuslink.models.join_request import JoinRequest
from campuslink.models.project_member import ProjectMember
from campuslink.models.project_task import ProjectTask


class Visibility(str, enum.Enum):
    PUBLIC = "Public"
    CONNECTIONS_ONLY = "Connections Only"
    CUSTOM = "Custom"


class ProjectPost(Base):
    __tablename__ = "project_posts"
    __table_args__ = (CheckConstraint("team_size >= 1", name="ck_project_posts_team_size"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # ── Post fields ──
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="Tech Projects")
    tags_json: Mapped[Optional[str]] = mapped_column(Text, default="[]")
    visibility: Mapped[Visibility] = mapped_column(Enum(Visibility), default=Visibility.PUBLIC)

    # ── Project details ──
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    skills_required_json: Mapped[Optional[str]] = mapped_column(Text, default="[]")
    estimated_duration: Mapped[str] = mapped_column(String(100), nullable=False)
    team_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Embedded collections ──
    members: Mapped[List[ProjectMember]] = relationship(
        order_by=ProjectMember.id, cascade="all, delete-orphan", lazy="selectin"
    )
    join_requests: Mapped[List[JoinRequest]] = relationship(
        order_by=JoinRequest.id, cascade="all, delete-orphan", lazy="selectin"
    )
    tasks: Mapped[List[ProjectTask]] = relationship(
        order_by=ProjectTask.id, cascade="all, delete-orphan", lazy="selectin"
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Derived team state ──
    @property
    def team_members(self) -> List[int]:
        return [m.user_id for m in self.members]

    @property
    def team_formed(self) -> bool:
        return len(self.members) == self.team_size

    @property
    def has_capacity(self) -> bool:
        return len(self.members) < self.team_size

    def is_member(self, user_id: int) -> bool:
        return any(m.user_id == user_id for m in self.members)

    def has_team_access(self, user_id: int) -> bool:
        """Creator or current member: may use the task board and team chat."""
        return self.author_id == user_id or self.is_member(user_id)

    # ── JSON helpers ──
    @property
    def tags(self) -> List[str]:
        try:
            return json.loads(self.tags_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    @property
    def skills_required(self) -> List[str]:
        try:
            return json.loads(self.skills_required_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []
