from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


StateTreeName = Literal["config", "workspace", "skills"]


class RestoreResult(BaseModel):
    configured: bool = False
    config_restored: bool = False
    legacy_migrated: bool = False
    workspace_file_count: int = 0
    skills_file_count: int = 0
    errors: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
