import asyncio
import json

from campuslink.database import Base, async_session, engine
from campuslink.models.project_post import ProjectPost, Visibility
from campuslink.models.user import User, UserRole
from campuslink.services.team_formation import team_engine


async def async_main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        u1 = User(email="alice@example.edu", full_name="Alice Builder", role=UserRole.STUDENT, institution="State University")
        u2 = User(email="bob@example.edu", full_name="Bob Designer", role=UserRole.STUDENT, institution="State University")
        u3 = User(email="carol@example.edu", full_name="Carol Research", role=UserRole.FACULTY, institution="State University")
        u4 = User(email="dan@example.edu", full_name="Dan Alumni", role=UserRole.ALUMNI, institution="State University")
        session.add_all([u1, u2, u3, u4])
        await session.flush()

        project = ProjectPost(
            author_id=u1.id,
            content="Building a campus lost-and-found app.",
            title="Lost & Found",
            description="Building a campus lost-and-found app.",
            skills_required_json=json.dumps(["Python", "React", "UI/UX"]),
            estimated_duration="6 weeks",
            team_size=2,
            visibility=Visibility.PUBLIC,
            tags_json=json.dumps(["campus", "mobile"]),
            members=[],
            join_requests=[],
            tasks=[],
        )
        session.add(project)
        await session.commit()

        # Bob joins and is approved; Carol's request stays pending.
        change = await team_engine.request_to_join(session, project.id, u2.id)
        await team_engine.manage_join_request(session, project.id, change.request.id, "approve", u1.id)
        await team_engine.request_to_join(session, project.id, u3.id)

    print("Database seeded with users and a project.")

asyncio.run(async_main())
