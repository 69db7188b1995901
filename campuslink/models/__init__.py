"""
CampusLink – SQLAlchemy ORM models package.

Imports all model classes so the app can discover them
through a single ``from campuslink.models import *`` import.
"""

from campuslink.models.user import User                       # noqa: F401
from campuslink.models.join_request import JoinRequest        # noqa: F401
from campuslink.models.project_member import ProjectMember    # noqa: F401
from campuslink.models.project_task import ProjectTask        # noqa: F401
from campuslink.models.project_post import ProjectPost        # noqa: F401
from campuslink.models.notification import Notification      # noqa: F401
from campuslink.models.chat_room import ChatRoom              # noqa: F401
from campuslink.models.message import Message                 # noqa: F401
