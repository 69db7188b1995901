"""Join-request ledger entry, embedded in a project post."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from campuslink.database import Base


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REMOVED = "removed"


class JoinAction(str, enum.Enum):
    APPROVE = "approve"
    DENY = "deny"
    REMOVE = "remove"


class JoinRequest(Base):
    __tablename__ = "join_requests"
    __table_args__ = (
        # One open request per (project, user); enforced by the database as well.
        Index(
            "uq_join_requests_one_pending",
            "project_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("project_posts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False
    )
    request_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    removal_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
