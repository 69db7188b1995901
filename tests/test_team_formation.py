import asyncio

import pytest
from sqlalchemy import select

from campuslink.errors import (
    AlreadyMember,
    CapacityExceeded,
    ConcurrentModification,
    CooldownActive,
    DuplicateRequest,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
)
from campuslink.models.join_request import RequestStatus
from campuslink.models.project_post import ProjectPost
from campuslink.services.team_formation import TeamFormationEngine


async def _join_and_approve(engine, db, project, creator, user):
    change = await engine.request_to_join(db, project.id, user.id)
    return await engine.manage_join_request(db, project.id, change.request.id, "approve", creator.id)


async def test_team_fills_up_and_rejects_further_requests(db_session, team_engine, make_user, make_project):
    creator, u1, u2, u3 = [await make_user() for _ in range(4)]
    project = await make_project(creator, team_size=2)

    change = await _join_and_approve(team_engine, db_session, project, creator, u1)
    assert change.project.team_members == [u1.id]
    assert change.project.team_formed is False

    change = await _join_and_approve(team_engine, db_session, project, creator, u2)
    assert change.project.team_members == [u1.id, u2.id]
    assert change.project.team_formed is True

    with pytest.raises(CapacityExceeded):
        await team_engine.request_to_join(db_session, project.id, u3.id)


async def test_removed_member_waits_out_cooldown(db_session, team_engine, clock, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator, team_size=2)
    await _join_and_approve(team_engine, db_session, project, creator, u1)

    removed_at = clock.now
    change = await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)
    assert change.request.status is RequestStatus.REMOVED
    assert change.request.removal_time == removed_at
    assert change.project.team_members == []

    clock.advance(minutes=30)
    with pytest.raises(CooldownActive) as excinfo:
        await team_engine.request_to_join(db_session, project.id, u1.id)
    assert excinfo.value.retry_after == 30 * 60

    clock.advance(minutes=31)
    change = await team_engine.request_to_join(db_session, project.id, u1.id)
    assert change.request.status is RequestStatus.PENDING

    project = await team_engine.load(db_session, project.id)
    assert [e.status for e in project.join_requests] == [RequestStatus.REMOVED, RequestStatus.PENDING]


async def test_denied_user_may_request_again_immediately(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)

    first = await team_engine.request_to_join(db_session, project.id, u1.id)
    await team_engine.manage_join_request(db_session, project.id, first.request.id, "deny", creator.id)

    second = await team_engine.request_to_join(db_session, project.id, u1.id)
    assert second.request.id != first.request.id
    assert second.request.status is RequestStatus.PENDING


async def test_second_pending_request_is_rejected(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)

    await team_engine.request_to_join(db_session, project.id, u1.id)
    with pytest.raises(DuplicateRequest):
        await team_engine.request_to_join(db_session, project.id, u1.id)

    project = await team_engine.load(db_session, project.id)
    assert len(project.join_requests) == 1


async def test_non_creator_cannot_manage_requests(db_session, team_engine, make_user, make_project):
    creator, u1, outsider = await make_user(), await make_user(), await make_user()
    project = await make_project(creator)
    change = await team_engine.request_to_join(db_session, project.id, u1.id)
    version = change.project.version

    with pytest.raises(Forbidden):
        await team_engine.manage_join_request(db_session, project.id, change.request.id, "approve", outsider.id)

    project = await team_engine.load(db_session, project.id)
    assert project.version == version
    assert project.team_members == []
    assert project.join_requests[0].status is RequestStatus.PENDING


async def test_member_cannot_request_to_join(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator, team_size=3)
    await _join_and_approve(team_engine, db_session, project, creator, u1)

    with pytest.raises(AlreadyMember):
        await team_engine.request_to_join(db_session, project.id, u1.id)


@pytest.mark.parametrize("final_status", ["approve", "deny"])
async def test_approve_after_disposition_is_invalid(db_session, team_engine, make_user, make_project, final_status):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator, team_size=3)
    change = await team_engine.request_to_join(db_session, project.id, u1.id)
    await team_engine.manage_join_request(db_session, project.id, change.request.id, final_status, creator.id)

    with pytest.raises(InvalidTransition):
        await team_engine.manage_join_request(db_session, project.id, change.request.id, "approve", creator.id)

    project = await team_engine.load(db_session, project.id)
    assert len(project.members) == (1 if final_status == "approve" else 0)


async def test_approve_on_removed_request_is_invalid(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)
    change = await _join_and_approve(team_engine, db_session, project, creator, u1)
    await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)

    with pytest.raises(InvalidTransition):
        await team_engine.manage_join_request(db_session, project.id, change.request.id, "approve", creator.id)


async def test_approve_when_full_is_rejected(db_session, team_engine, make_user, make_project):
    creator, u1, u2 = await make_user(), await make_user(), await make_user()
    project = await make_project(creator, team_size=1)
    first = await team_engine.request_to_join(db_session, project.id, u1.id)
    second = await team_engine.request_to_join(db_session, project.id, u2.id)

    await team_engine.manage_join_request(db_session, project.id, first.request.id, "approve", creator.id)
    with pytest.raises(CapacityExceeded):
        await team_engine.manage_join_request(db_session, project.id, second.request.id, "approve", creator.id)

    project = await team_engine.load(db_session, project.id)
    assert project.team_members == [u1.id]
    assert project.join_requests[1].status is RequestStatus.PENDING


async def test_unknown_action_is_invalid_argument(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)
    change = await team_engine.request_to_join(db_session, project.id, u1.id)
    # a rejection rolls the session back and expires ``change``
    request_id = change.request.id

    for action in ("maybe", "remove"):
        with pytest.raises(InvalidArgument):
            await team_engine.manage_join_request(db_session, project.id, request_id, action, creator.id)

    project = await team_engine.load(db_session, project.id)
    assert project.join_requests[0].status is RequestStatus.PENDING


async def test_missing_project_and_request(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)

    with pytest.raises(NotFound):
        await team_engine.request_to_join(db_session, 9999, u1.id)
    with pytest.raises(NotFound):
        await team_engine.manage_join_request(db_session, project.id, 9999, "approve", creator.id)
    with pytest.raises(NotFound):
        await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)


async def test_only_creator_can_remove(db_session, team_engine, make_user, make_project):
    creator, u1, u2 = await make_user(), await make_user(), await make_user()
    project = await make_project(creator, team_size=3)
    await _join_and_approve(team_engine, db_session, project, creator, u1)
    await _join_and_approve(team_engine, db_session, project, creator, u2)

    with pytest.raises(Forbidden):
        await team_engine.remove_team_member(db_session, project.id, u2.id, u1.id)


async def test_removal_from_full_team_clears_team_formed(db_session, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator, team_size=1)
    change = await _join_and_approve(team_engine, db_session, project, creator, u1)
    assert change.project.team_formed is True

    change = await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)
    assert change.project.team_formed is False


async def test_cooldown_uses_latest_removal(db_session, team_engine, clock, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)

    await _join_and_approve(team_engine, db_session, project, creator, u1)
    await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)
    clock.advance(hours=2)
    await _join_and_approve(team_engine, db_session, project, creator, u1)
    clock.advance(minutes=5)
    await team_engine.remove_team_member(db_session, project.id, u1.id, creator.id)

    # the first removal is long past; the second one still gates re-entry
    clock.advance(minutes=10)
    with pytest.raises(CooldownActive):
        await team_engine.request_to_join(db_session, project.id, u1.id)


async def test_concurrent_approvals_never_overfill(session_factory, team_engine, make_user, make_project):
    creator, u1, u2 = await make_user(), await make_user(), await make_user()
    project = await make_project(creator, team_size=1)

    async with session_factory() as db:
        r1 = await team_engine.request_to_join(db, project.id, u1.id)
        r2 = await team_engine.request_to_join(db, project.id, u2.id)
    request_ids = [r1.request.id, r2.request.id]

    async def approve(request_id):
        async with session_factory() as db:
            return await team_engine.manage_join_request(db, project.id, request_id, "approve", creator.id)

    results = await asyncio.gather(*(approve(rid) for rid in request_ids), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, CapacityExceeded)) == 1
    async with session_factory() as db:
        project = await team_engine.load(db, project.id)
        assert len(project.members) == 1
        assert project.team_formed is True


async def test_concurrent_duplicate_requests_create_one_entry(session_factory, team_engine, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)

    async def request():
        async with session_factory() as db:
            return await team_engine.request_to_join(db, project.id, u1.id)

    results = await asyncio.gather(request(), request(), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, DuplicateRequest)) == 1
    async with session_factory() as db:
        project = await team_engine.load(db, project.id)
        assert len(project.join_requests) == 1


class InterferingEngine(TeamFormationEngine):
    """Lets another writer commit between this engine's read and its write."""

    def __init__(self, session_factory, interruptions, **kwargs):
        super().__init__(**kwargs)
        self.session_factory = session_factory
        self.interruptions = interruptions
        self.loads = 0

    async def load(self, db, project_id):
        project = await super().load(db, project_id)
        self.loads += 1
        if self.loads <= self.interruptions:
            async with self.session_factory() as other:
                row = (await other.execute(select(ProjectPost).where(ProjectPost.id == project_id))).scalar_one()
                row.category = f"edited {self.loads}"
                await other.commit()
        return project


async def test_lost_race_is_retried_with_fresh_state(session_factory, clock, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)
    engine = InterferingEngine(session_factory, interruptions=1, clock=clock, max_retries=3)

    async with session_factory() as db:
        change = await engine.request_to_join(db, project.id, u1.id)

    assert engine.loads == 2
    assert change.request.status is RequestStatus.PENDING
    async with session_factory() as db:
        project = await engine.load(db, project.id)
        assert len(project.join_requests) == 1
        assert project.category == "edited 1"


async def test_gives_up_after_max_retries(session_factory, clock, make_user, make_project):
    creator, u1 = await make_user(), await make_user()
    project = await make_project(creator)
    engine = InterferingEngine(session_factory, interruptions=5, clock=clock, max_retries=2)

    async with session_factory() as db:
        with pytest.raises(ConcurrentModification):
            await engine.request_to_join(db, project.id, u1.id)

        project = await TeamFormationEngine().load(db, project.id)
        assert project.join_requests == []


async def test_project_locks_are_released(session_factory, team_engine, make_user, make_project):
    creator, u1, u2 = await make_user(), await make_user(), await make_user()
    project = await make_project(creator)

    for project_id in range(10000, 10050):
        async with session_factory() as db:
            try:
                await team_engine.request_to_join(db, project_id, u1.id)
            except NotFound:
                pass
    assert team_engine._locks == {}

    async def request(user):
        async with session_factory() as db:
            return await team_engine.request_to_join(db, project.id, user.id)

    await asyncio.gather(request(u1), request(u2))
    assert team_engine._locks == {}
    assert not team_engine._waiters
