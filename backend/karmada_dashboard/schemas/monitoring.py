from __future__ import annotations

from pydantic import BaseModel


class GrafanaCreate(BaseModel):
    name: str = ""
    endpoint: str = ""
    token: str = ""
