"""User Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel

from campuslink.models.user import UserRole


class UserOut(BaseModel):
    """Public user representation returned by the API."""
    id: int
    email: str
    full_name: str
    role: UserRole
    institution: Optional[str] = None
    department: Optional[str] = None

    model_config = {"from_attributes": True}
