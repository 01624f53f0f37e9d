"""Profile models for Overseer agent definitions."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

ArtifactKind = Literal["summary", "plan", "none"]
RoleClass = Literal["validation", "development"]


class AgentProfile(BaseModel):
    """Configuration describing how Overseer should prime and constrain a worker."""

    id: str = Field(..., description="Unique agent name used by invoke_agent.")
    title: str = Field(default="", description="Display title for the agent profile.")
    description: str = Field(default="", description="What the agent is specialised in.")
    system_prompt: str = Field(
        default="",
        description="Instructions placed ahead of the task when the worker is invoked.",
    )
    role: str = Field(
        default="write-restricted",
        description="Security role selecting implicit grants and denials.",
    )
    allowed_tools: list[str] = Field(
        default_factory=list,
        description="Capabilities explicitly requested for this agent.",
    )
    denied_tools: list[str] = Field(
        default_factory=list,
        description="Capabilities the agent definition names as forbidden (validated only).",
    )
    model: str | None = Field(default=None, description="Worker model override.")
    artifact: ArtifactKind = Field(
        default="summary",
        description="Mandatory output artifact checked after every invocation.",
    )
    role_class: RoleClass = Field(
        default="development",
        description="Timeout class: short for validation roles, long for development roles.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata surfaced by list_agents.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent profile id must not be empty")
        return normalized

    @field_validator("allowed_tools", "denied_tools", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("allowed_tools and denied_tools must be sequences of strings")

    @property
    def display_title(self) -> str:
        return self.title or self.id


__all__ = ["AgentProfile", "ArtifactKind", "RoleClass"]
