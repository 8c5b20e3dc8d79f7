from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


SidecarStatus = Literal["launched", "ready", "not_ready", "exited", "failed"]


class CredentialFile(BaseModel):
    path: str
    content: str = Field(repr=False)
    mode: int = 0o600

    model_config = ConfigDict(extra="forbid")


class SidecarSpec(BaseModel):
    """One MCP bridge process (supergateway wrapping a stdio MCP server)."""

    name: str
    listen_port: int
    launch_command: List[str]
    credential_files: List[CredentialFile] = Field(default_factory=list)
    required_env: List[str] = Field(default_factory=list)
    # Secrets for the child process. Passed through the environment, never argv.
    env: Dict[str, str] = Field(default_factory=dict, repr=False)

    model_config = ConfigDict(extra="forbid")

    @property
    def mcp_url(self) -> str:
        return f"http://localhost:{self.listen_port}/mcp"

    @property
    def probe_url(self) -> str:
        return f"http://127.0.0.1:{self.listen_port}/mcp"


class SidecarResult(BaseModel):
    name: str
    port: int
    status: SidecarStatus
    pid: Optional[int] = None
    error: str = ""

    model_config = ConfigDict(extra="forbid")


class SidecarReport(BaseModel):
    stale_killed: List[int] = Field(default_factory=list)
    results: List[SidecarResult] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def launched(self) -> List[str]:
        return [r.name for r in self.results if r.status != "failed"]
