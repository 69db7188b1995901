"""
CampusLink — FastAPI application entry-point.

Run with:
    uvicorn campuslink.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from campuslink.config import settings
from campuslink.database import Base, engine, get_db
from campuslink.errors import CooldownActive, TeamFormationError
from campuslink.models import ProjectMember, ProjectPost, User  # registers every table

# ── Import routers ──
from campuslink.routers import auth, chat, notifications, projects, users
from campuslink.routers.auth import set_auth_cookie

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: create tables on startup ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Campus social network — post projects, request to join, form teams.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))


# ── Domain errors → JSON ──
@app.exception_handler(TeamFormationError)
async def team_formation_error_handler(request: Request, exc: TeamFormationError):
    headers = None
    if isinstance(exc, CooldownActive):
        headers = {"Retry-After": str(exc.retry_after)}
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=headers,
    )


# ── Register API routers ──
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(notifications.router)
app.include_router(chat.router)

if settings.ENVIRONMENT != "production":

    @app.get("/mock-login/{user_id}")
    def mock_login(user_id: int):
        resp = RedirectResponse(url="/users/me", status_code=303)
        return set_auth_cookie(resp, user_id)


# ── Landing stats ──
@app.get("/")
async def homepage(db: AsyncSession = Depends(get_db)):
    users_count = (await db.execute(select(func.count(User.id)))).scalar() or 0
    projects_count = (await db.execute(select(func.count(ProjectPost.id)))).scalar() or 0

    # A team is formed once its roster size equals the project's team size.
    roster = (
        select(ProjectMember.project_id, func.count(ProjectMember.id).label("size"))
        .group_by(ProjectMember.project_id)
        .subquery()
    )
    formed_count = (
        await db.execute(
            select(func.count(ProjectPost.id))
            .join(roster, roster.c.project_id == ProjectPost.id)
            .where(roster.c.size == ProjectPost.team_size)
        )
    ).scalar() or 0

    return {
        "app": settings.APP_NAME,
        "stats": {
            "users": users_count,
            "projects": projects_count,
            "teams_formed": formed_count,
        },
    }
