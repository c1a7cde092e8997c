from __future__ import annotations

from pydantic import BaseModel


class DashboardCreate(BaseModel):
    name: str
    url: str
