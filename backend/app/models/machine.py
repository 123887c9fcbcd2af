"""Machine records managed by administrators."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Machine(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str
    type: str = Field(default="")
    serial_number: Optional[str] = None
    location: str = Field(default="")
    status: str = Field(default="operational")  # operational | maintenance | alert
    manual_path: Optional[str] = None  # relative to the data directory
    notice_path: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
