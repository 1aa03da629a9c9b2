"""Container state models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ContainerState(BaseModel):
    """Snapshot of a container's ``State`` section from inspect."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(default="")
    running: bool = Field(default=False)
    oom_killed: bool = Field(default=False)
    dead: bool = Field(default=False)
    pid: int = Field(default=0)
    exit_code: int = Field(default=0)
    error: str = Field(default="")
    health_status: Optional[str] = Field(default=None)

    @classmethod
    def from_inspect(cls, data: Dict[str, Any]) -> "ContainerState":
        """Build from a full inspect response (or its ``State`` member)."""
        state = data.get("State", data) or {}
        health = state.get("Health") or {}
        return cls(
            status=state.get("Status") or "",
            running=bool(state.get("Running")),
            oom_killed=bool(state.get("OOMKilled")),
            dead=bool(state.get("Dead")),
            pid=state.get("Pid") or 0,
            exit_code=state.get("ExitCode") or 0,
            error=state.get("Error") or "",
            health_status=health.get("Status") or None,
        )

    @property
    def has_health(self) -> bool:
        return self.health_status is not None
