"""Intervention reports filed by technicians."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class InterventionReport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    machine_id: str = Field(foreign_key="machine.id", index=True)
    technician_id: Optional[str] = None
    description: str = Field(default="")
    actions: str = Field(default="")
    parts_used: Optional[str] = None
    time_spent: Optional[float] = None  # hours
    status: str = Field(default="brouillon")  # brouillon | termine
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
