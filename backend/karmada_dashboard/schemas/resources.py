from __future__ import annotations

from pydantic import BaseModel, Field


class NamespaceCreate(BaseModel):
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
