"""Team-formation engine: join requests, approvals, removals.

The three ``apply_*`` functions are the transition rules.  They work on a
loaded ``ProjectPost`` in memory and either mutate it consistently or raise
a ``TeamFormationError`` before touching anything.

``TeamFormationEngine`` runs each rule as one unit of work against the
database: a per-project ``asyncio.Lock`` serialises callers inside this
process, and the post's ``version`` column turns the commit into a
compare-and-swap across processes.  A lost race is rolled back, the
aggregate reloaded and the rule re-run with fresh preconditions.
"""

import asyncio
import logging
import math
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from campuslink.config import settings
from campuslink.errors import (
    AlreadyMember,
    CapacityExceeded,
    ConcurrentModification,
    CooldownActive,
    DuplicateRequest,
    Forbidden,
    InvalidArgument,
    NotFound,
    TeamFormationError,
)
from campuslink.models.join_request import JoinAction, JoinRequest, RequestStatus
from campuslink.models.project_member import ProjectMember
from campuslink.models.project_post import ProjectPost
from campuslink.services.cooldown import REENTRY_COOLDOWN, is_reentry_allowed, remaining_cooldown
from campuslink.services.ledger import JoinRequestLedger, apply_transition, next_status

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TeamChange:
    """Outcome of a transition, handed back to the API layer."""

    project: ProjectPost
    request: Optional[JoinRequest]


# ═══════════════════════════════════════════════════════════════
#  Transition rules
# ═══════════════════════════════════════════════════════════════

def _touch(project: ProjectPost, now: datetime) -> None:
    # A column change on the post forces the versioned UPDATE.
    project.updated_at = now


def _require_creator(project: ProjectPost, acting_user_id: int, action: str) -> None:
    if project.author_id != acting_user_id:
        raise Forbidden(f"Only the project creator can {action}.")


def apply_join_request(
    project: ProjectPost,
    user_id: int,
    now: datetime,
    cooldown: timedelta = REENTRY_COOLDOWN,
) -> JoinRequest:
    if not project.has_capacity:
        raise CapacityExceeded("Team size limit reached. Cannot join the project.")
    if project.is_member(user_id):
        raise AlreadyMember("You are already part of this project team.")

    ledger = JoinRequestLedger(project.join_requests)
    latest = ledger.latest_for(user_id)
    if latest is not None:
        if latest.status == RequestStatus.REMOVED and latest.removal_time is not None:
            if not is_reentry_allowed(latest.removal_time, now, cooldown):
                remaining = remaining_cooldown(latest.removal_time, now, cooldown)
                seconds = math.ceil(remaining.total_seconds())
                raise CooldownActive(
                    retry_after=seconds,
                    detail=(
                        "You can only request to rejoin after one hour from removal. "
                        f"Try again in {math.ceil(seconds / 60)} minute(s)."
                    ),
                )
        elif latest.status == RequestStatus.PENDING:
            raise DuplicateRequest()

    entry = ledger.append(user_id, now)
    _touch(project, now)
    return entry


def apply_decision(
    project: ProjectPost,
    entry: JoinRequest,
    action: JoinAction,
    now: datetime,
) -> JoinRequest:
    if action not in (JoinAction.APPROVE, JoinAction.DENY):
        raise InvalidArgument("Invalid action.")

    next_status(entry.status, action)
    if action is JoinAction.APPROVE:
        if not project.has_capacity:
            raise CapacityExceeded("Cannot add more members. Team size limit reached.")
        if project.is_member(entry.user_id):
            raise AlreadyMember("User is already part of the team.")
        project.members.append(ProjectMember(user_id=entry.user_id, joined_at=now))

    apply_transition(entry, action, now)
    _touch(project, now)
    return entry


def apply_removal(project: ProjectPost, user_id: int, now: datetime) -> Optional[JoinRequest]:
    member = next((m for m in project.members if m.user_id == user_id), None)
    if member is None:
        raise NotFound("User not found in the team.")

    project.members.remove(member)
    entry = JoinRequestLedger(project.join_requests).approved_entry_for(user_id)
    if entry is not None:
        apply_transition(entry, JoinAction.REMOVE, now)
    _touch(project, now)
    return entry


def parse_action(action: str) -> JoinAction:
    try:
        parsed = JoinAction(action)
    except ValueError:
        raise InvalidArgument("Invalid action.") from None
    if parsed is JoinAction.REMOVE:
        raise InvalidArgument("Invalid action.")
    return parsed


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════

class TeamFormationEngine:
    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        cooldown: timedelta = REENTRY_COOLDOWN,
        max_retries: int = settings.TEAM_TX_MAX_RETRIES,
    ):
        self.clock = clock
        self.cooldown = cooldown
        self.max_retries = max_retries
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Counter = Counter()

    @asynccontextmanager
    async def _project_lock(self, project_id: int):
        """Hold the per-project lock; the entry is dropped with its last holder."""
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        self._waiters[project_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[project_id] -= 1
            if not self._waiters[project_id]:
                del self._waiters[project_id]
                del self._locks[project_id]

    async def load(self, db: AsyncSession, project_id: int) -> ProjectPost:
        result = await db.execute(
            select(ProjectPost)
            .where(ProjectPost.id == project_id)
            .execution_options(populate_existing=True)
        )
        project = result.scalar_one_or_none()
        if not project:
            raise NotFound("Project not found.")
        return project

    async def _run(
        self,
        db: AsyncSession,
        project_id: int,
        operation: str,
        rule: Callable[[ProjectPost, datetime], T],
    ) -> T:
        """Run ``rule`` as one unit of work, retrying lost write races.

        Every outcome ends in a commit or a rollback on ``db``, and a rollback
        expires all objects in the session, so callers read what they need
        from their ORM objects before calling in.
        """
        async with self._project_lock(project_id):
            for attempt in range(1, self.max_retries + 1):
                try:
                    project = await self.load(db, project_id)
                    result = rule(project, self.clock())
                    await db.commit()
                    return result
                except TeamFormationError:
                    await db.rollback()
                    raise
                except (StaleDataError, IntegrityError) as exc:
                    await db.rollback()
                    logger.warning(
                        "%s on project %s lost a write race (attempt %s/%s): %s",
                        operation, project_id, attempt, self.max_retries, exc,
                    )
        raise ConcurrentModification()

    async def request_to_join(
        self, db: AsyncSession, project_id: int, user_id: int
    ) -> TeamChange:
        def rule(project: ProjectPost, now: datetime) -> TeamChange:
            entry = apply_join_request(project, user_id, now, self.cooldown)
            return TeamChange(project=project, request=entry)

        change = await self._run(db, project_id, "request-to-join", rule)
        logger.info("User %s requested to join project %s", user_id, project_id)
        return change

    async def manage_join_request(
        self,
        db: AsyncSession,
        project_id: int,
        request_id: int,
        action: str,
        acting_user_id: int,
    ) -> TeamChange:
        def rule(project: ProjectPost, now: datetime) -> TeamChange:
            _require_creator(project, acting_user_id, "approve or deny requests")
            entry = JoinRequestLedger(project.join_requests).get(request_id)
            if entry is None:
                raise NotFound("Request not found.")
            apply_decision(project, entry, parse_action(action), now)
            return TeamChange(project=project, request=entry)

        change = await self._run(db, project_id, "manage-join-request", rule)
        logger.info(
            "Join request %s on project %s -> %s (team %s/%s)",
            request_id, project_id, change.request.status.value,
            len(change.project.members), change.project.team_size,
        )
        return change

    async def remove_team_member(
        self,
        db: AsyncSession,
        project_id: int,
        target_user_id: int,
        acting_user_id: int,
    ) -> TeamChange:
        def rule(project: ProjectPost, now: datetime) -> TeamChange:
            _require_creator(project, acting_user_id, "remove team members")
            entry = apply_removal(project, target_user_id, now)
            return TeamChange(project=project, request=entry)

        change = await self._run(db, project_id, "remove-team-member", rule)
        logger.info("User %s removed from project %s", target_user_id, project_id)
        return change


team_engine = TeamFormationEngine()


def get_team_engine() -> TeamFormationEngine:
    return team_engine
