from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from taskgate.tracker.enums import UserRole


class UserOut(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    department: Optional[str] = None
    role: UserRole
    active: bool = True

    class Config:
        from_attributes = True
